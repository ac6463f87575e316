#!/usr/bin/env python3
"""Alert Monitor - CLI Entry Point."""
import sys
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
from rich.console import Console
from rich.table import Table

from __version__ import __version__

console = Console()


def _init_components(config_path=None, verbose=False):
    """Lazy initialization of all components."""
    from utils.logger import setup_logging, SystemLogger
    from config import load_config
    from models.database import Database
    from realtime.hub import RealtimeHub
    from alerts.channels import build_adapters
    from alerts.cooldown import CooldownManager
    from alerts.dispatcher import NotificationDispatcher
    from alerts.rules_manager import RulesManager
    from monitor.orchestrator import AlertOrchestrator

    config = load_config(config_path)
    setup_logging("DEBUG" if verbose else config["logging"]["level"],
                  config["logging"].get("file"))

    hub = RealtimeHub(default_buffer=config["realtime"]["buffer_size"])
    db = Database(config["database"]["path"], publisher=hub)
    db.connect()
    system_log = SystemLogger(db)

    cooldowns = CooldownManager(
        db, default_cooldown=timedelta(minutes=config["cooldown"]["default_minutes"]))
    dispatcher = NotificationDispatcher(
        build_adapters(config), db, system_log,
        channel_timeout=config["dispatch"]["channel_timeout"],
    )
    orch_cfg = config["orchestrator"]
    orchestrator = AlertOrchestrator(
        rule_store=db, metric_store=db, cooldowns=cooldowns, dispatcher=dispatcher,
        system_log=system_log,
        lookback=timedelta(minutes=orch_cfg["lookback_minutes"]),
        max_parallel=orch_cfg["max_parallel"],
        tick_deadline=orch_cfg["tick_deadline_seconds"],
    )
    rules = RulesManager(config.get("rules", {}).get("path", "config/alert_rules.yaml"))

    return {
        "config": config, "db": db, "hub": hub, "system_log": system_log,
        "cooldowns": cooldowns, "dispatcher": dispatcher,
        "orchestrator": orchestrator, "rules": rules,
    }


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="alertmonitor")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Alert Monitor - Threshold alerts for servers and applications."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_components(ctx):
    if "_components" not in ctx.obj:
        ctx.obj["_components"] = _init_components(ctx.obj.get("config_path"), ctx.obj.get("verbose"))
    return ctx.obj["_components"]


def _print_summary(summary):
    if summary.aborted:
        console.print("[red]✗ Tick aborted[/red] (see: python main.py logs --level error)")
        return
    table = Table(title=f"Tick {summary.tick_id}", show_header=False, box=None)
    table.add_column("Counter", style="dim")
    table.add_column("Value", justify="right")
    for label, value in [
        ("Rules evaluated", summary.rules_evaluated),
        ("Violations", summary.violations),
        ("Notified rules", summary.notifications_sent),
        ("Deliveries sent", summary.deliveries_sent),
        ("Deliveries failed", summary.deliveries_failed),
        ("Suppressed (cooldown)", summary.suppressed),
        ("No data", summary.data_unavailable),
        ("Errors", summary.errors),
        ("Timed out", summary.timed_out),
    ]:
        table.add_row(label, str(value))
    console.print(table)


def _print_results(results):
    table = Table(title="Channel Results", show_header=True)
    table.add_column("Channel")
    table.add_column("Destination")
    table.add_column("Status")
    table.add_column("Error")
    for r in results:
        status = "[green]sent[/green]" if r.ok else "[red]failed[/red]"
        table.add_row(r.channel.value, r.destination or "-", status, r.error or "")
    console.print(table)


# ──────────────────────────────────────────────────────
# SETUP
# ──────────────────────────────────────────────────────
@cli.command()
@click.pass_context
def setup(ctx):
    """First-time setup: initialize DB and import rules from YAML."""
    c = _get_components(ctx)
    console.print("[bold cyan]Alert Monitor - Setup[/bold cyan]\n")
    console.print(f"[green]✓[/green] Database initialized at {c['config']['database']['path']}")

    count = c["rules"].import_into(c["db"])
    console.print(f"[green]✓[/green] Imported {count} alert rule(s)")

    channels = sorted(ch.value for ch in c["dispatcher"].adapters)
    console.print(f"[green]✓[/green] Channels enabled: {', '.join(channels) or 'none'}")
    console.print("\n[bold]Setup complete![/bold] Run [bold]python main.py run[/bold] to start monitoring.\n")


# ──────────────────────────────────────────────────────
# ORCHESTRATOR
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def tick(ctx, as_json):
    """Run a single evaluation tick now."""
    c = _get_components(ctx)
    summary = c["orchestrator"].run_tick()
    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2))
    else:
        _print_summary(summary)
    if summary.aborted:
        ctx.exit(1)


@cli.command()
@click.option("--interval", default=None, type=int, help="Seconds between ticks")
@click.pass_context
def run(ctx, interval):
    """Run the orchestrator on a fixed interval until interrupted."""
    from monitor.scheduler import OrchestratorScheduler

    c = _get_components(ctx)
    interval = interval or c["config"]["orchestrator"]["interval_seconds"]
    scheduler = OrchestratorScheduler(c["orchestrator"], interval_seconds=interval)
    scheduler.on_tick(lambda s: console.print(
        f"[dim]{s.started_at:%H:%M:%S}[/dim] tick {s.tick_id}: "
        f"{s.violations} violation(s), {s.notifications_sent} notified, {s.suppressed} suppressed"
    ))
    console.print(f"[bold cyan]Alert Monitor[/bold cyan] ticking every {interval}s. Press Ctrl+C to stop.")
    scheduler.run_forever()


@cli.command("test-alert")
@click.option("--entity", "entity_id", required=True, help="Server or application id")
@click.option("--entity-type", default="server", type=click.Choice(["server", "application"]))
@click.option("--metric", default="cpu", help="Metric kind")
@click.option("--value", "current_value", default="95", help="Current value to report")
@click.option("--threshold", default=80.0, type=float, help="Threshold to report")
@click.option("--channel", "channels", multiple=True, required=True,
              help="type=destination, e.g. email=ops@example.com (repeatable)")
@click.pass_context
def test_alert(ctx, entity_id, entity_type, metric, current_value, threshold, channels):
    """Send a test alert through the given channels, bypassing cooldowns."""
    targets = []
    for raw in channels:
        ch_type, _, destination = raw.partition("=")
        targets.append({"type": ch_type.strip(), "destination": destination.strip()})

    c = _get_components(ctx)
    try:
        results = c["orchestrator"].send_test_alert(
            target={"type": entity_type, "id": entity_id},
            metric=metric, current_value=current_value, threshold=threshold,
            channels=targets,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))
    _print_results(results)
    if not any(r.ok for r in results):
        ctx.exit(1)


# ──────────────────────────────────────────────────────
# RULES
# ──────────────────────────────────────────────────────
@cli.group()
def rules():
    """Alert rule management."""
    pass


@rules.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include disabled rules")
@click.pass_context
def rules_list(ctx, show_all):
    """List alert rules stored in the database."""
    from utils.formatters import format_metric_value, metric_label
    from models.enums import MetricKind

    c = _get_components(ctx)
    items = c["db"].get_all_rules() if show_all else c["db"].active_rules()
    if not items:
        console.print("[dim]No rules. Import some with: python main.py rules import[/dim]")
        return
    table = Table(title="Alert Rules", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Target")
    table.add_column("Condition")
    table.add_column("Channels")
    table.add_column("Enabled")
    for r in items:
        condition = "is down" if r.metric is MetricKind.STATUS else \
            f">= {format_metric_value(r.metric, r.threshold)}"
        table.add_row(r.id, f"{r.target.type.value}:{r.target.display_name}",
                      f"{metric_label(r.metric)} {condition}",
                      ", ".join(ch.channel.value for ch in r.channels) or "-",
                      "[green]✓[/green]" if r.enabled else "[red]✗[/red]")
    console.print(table)


@rules.command("import")
@click.option("--file", "rules_file", default=None, help="Rules YAML (default: config rules.path)")
@click.pass_context
def rules_import(ctx, rules_file):
    """Import rules from a YAML file into the database."""
    from alerts.rules_manager import RulesManager

    c = _get_components(ctx)
    manager = RulesManager(rules_file) if rules_file else c["rules"]
    count = manager.import_into(c["db"])
    console.print(f"[green]✓[/green] Imported {count} rule(s) from {manager.rules_path}")


def _set_enabled(ctx, rule_id, enabled):
    c = _get_components(ctx)
    if not c["db"].set_rule_enabled(rule_id, enabled):
        console.print(f"[red]Rule not found: {rule_id}[/red]")
        ctx.exit(1)
    console.print(f"[green]✓[/green] Rule {rule_id} {'enabled' if enabled else 'disabled'}")


@rules.command("enable")
@click.argument("rule_id")
@click.pass_context
def rules_enable(ctx, rule_id):
    """Enable a rule."""
    _set_enabled(ctx, rule_id, True)


@rules.command("disable")
@click.argument("rule_id")
@click.pass_context
def rules_disable(ctx, rule_id):
    """Disable a rule."""
    _set_enabled(ctx, rule_id, False)


# ──────────────────────────────────────────────────────
# METRICS
# ──────────────────────────────────────────────────────
@cli.group()
def metrics():
    """Record and inspect metric samples."""
    pass


@metrics.command("push")
@click.option("--entity", "entity_id", required=True, help="Server or application id")
@click.option("--entity-type", default="server", type=click.Choice(["server", "application"]))
@click.option("--name", default="", help="Display name")
@click.option("--cpu", type=float, default=None)
@click.option("--memory", type=float, default=None)
@click.option("--disk", type=float, default=None)
@click.option("--response-time", type=float, default=None, help="Milliseconds")
@click.option("--errors", type=int, default=None, help="Error count")
@click.option("--status", default=None, help="up / down / degraded")
@click.pass_context
def metrics_push(ctx, entity_id, entity_type, name, cpu, memory, disk, response_time, errors, status):
    """Store one metric sample for an entity."""
    from models.metrics import EntityRef, MetricSample

    payload = {k: v for k, v in {
        "cpu": cpu, "memory": memory, "disk": disk, "response_time": response_time,
        "error_count": errors, "status": status,
    }.items() if v is not None}
    if not payload:
        raise click.UsageError("Provide at least one reading (--cpu, --status, ...)")

    c = _get_components(ctx)
    entity = EntityRef(type=entity_type, id=entity_id, name=name)
    try:
        sample = MetricSample.from_payload(entity, payload, datetime.now(timezone.utc))
    except ValueError as e:
        raise click.BadParameter(str(e))
    c["db"].save_entity(entity)
    c["db"].save_sample(sample)
    console.print(f"[green]✓[/green] Sample stored for {entity.display_name}: "
                  f"{', '.join(f'{k}={v}' for k, v in payload.items())}")


@metrics.command("latest")
@click.option("--entity", "entity_ids", multiple=True, required=True, help="Entity id (repeatable)")
@click.option("--minutes", default=5, type=int, help="Lookback window")
@click.pass_context
def metrics_latest(ctx, entity_ids, minutes):
    """Show the newest sample per entity within the lookback window."""
    from utils.formatters import format_metric_value, time_ago

    c = _get_components(ctx)
    since = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    newest = {}
    for s in c["db"].latest_samples(entity_ids, since=since):
        newest.setdefault(s.entity.id, s)
    if not newest:
        console.print(f"[dim]No samples in the last {minutes} minutes[/dim]")
        return
    table = Table(title="Latest Samples", show_header=True)
    table.add_column("Entity")
    table.add_column("Captured", style="dim")
    table.add_column("Readings")
    for entity_id in entity_ids:
        s = newest.get(entity_id)
        if s is None:
            table.add_row(entity_id, "-", "[dim]no data[/dim]")
            continue
        readings = ", ".join(f"{k.value}={format_metric_value(k, r.value)}"
                             for k, r in s.readings.items())
        table.add_row(s.entity.display_name, time_ago(s.captured_at), readings)
    console.print(table)


# ──────────────────────────────────────────────────────
# HISTORY
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--limit", default=20, type=int, help="Rows to show")
@click.option("--status", default=None, type=click.Choice(["queued", "sent", "failed"]))
@click.option("--rule", "rule_id", default=None, help="Filter by rule id")
@click.pass_context
def notifications(ctx, limit, status, rule_id):
    """Show recent notification attempts."""
    c = _get_components(ctx)
    rows = c["db"].get_recent_notifications(limit=limit, rule_id=rule_id, status=status)
    if not rows:
        console.print("[dim]No notifications yet[/dim]")
        return
    colors = {"sent": "green", "failed": "red", "queued": "yellow"}
    table = Table(title="Notifications", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Rule")
    table.add_column("Channel")
    table.add_column("Status")
    table.add_column("Error")
    for n in rows:
        color = colors.get(n["status"], "white")
        table.add_row(n["created_at"][:19], n["rule_id"], n["channel"],
                      f"[{color}]{n['status']}[/{color}]", (n["error"] or "")[:60])
    console.print(table)


@cli.command()
@click.option("--limit", default=30, type=int, help="Rows to show")
@click.option("--level", default=None, type=click.Choice(["debug", "info", "warn", "error"]))
@click.option("--component", default=None, help="Filter by component")
@click.pass_context
def logs(ctx, limit, level, component):
    """Show recent system log entries."""
    c = _get_components(ctx)
    entries = c["db"].get_recent_logs(limit=limit, level=level, component=component)
    if not entries:
        console.print("[dim]No log entries[/dim]")
        return
    colors = {"debug": "dim", "info": "blue", "warn": "yellow", "error": "red"}
    table = Table(title="System Log", show_header=True)
    table.add_column("Time", style="dim")
    table.add_column("Level")
    table.add_column("Component")
    table.add_column("Message")
    for e in entries:
        color = colors.get(e.level, "white")
        table.add_row(e.timestamp.strftime("%Y-%m-%d %H:%M:%S"), f"[{color}]{e.level}[/{color}]",
                      e.component, e.message[:80])
    console.print(table)


# ──────────────────────────────────────────────────────
# WEB
# ──────────────────────────────────────────────────────
@cli.command()
@click.option("--port", default=None, type=int, help="Port to listen on")
@click.option("--host", default=None, help="Host to bind")
@click.option("--with-scheduler", is_flag=True, help="Also run the orchestrator in the background")
@click.pass_context
def web(ctx, port, host, with_scheduler):
    """Launch the web API with live updates."""
    from web.app import create_app

    c = _get_components(ctx)
    port = port or c["config"]["web"]["port"]
    host = host or c["config"]["web"]["host"]

    engines = {"db": c["db"], "orchestrator": c["orchestrator"], "hub": c["hub"]}
    app = create_app(c["config"], engines)

    if with_scheduler:
        from monitor.scheduler import OrchestratorScheduler
        OrchestratorScheduler(
            c["orchestrator"], interval_seconds=c["config"]["orchestrator"]["interval_seconds"]
        ).start()

    console.print(f"\n[bold cyan]Alert Monitor -- Web API[/bold cyan]\n")
    console.print(f"  API:     http://{host}:{port}/api/health")
    console.print(f"  Stream:  http://{host}:{port}/api/stream")
    console.print(f"\n  Press Ctrl+C to stop.\n")

    app.run(host=host, port=port, debug=False, threaded=True)


if __name__ == "__main__":
    cli()
