"""
Flask API for Alert Monitor dashboards.

API endpoints:
  GET  /api/health         - Service status, orchestrator state, row counts
  GET  /api/rules          - Alert rules (?enabled=1 for active only)
  GET  /api/notifications  - Recent notification records (?status=, ?rule_id=, ?limit=)
  GET  /api/logs           - Recent system log entries (?level=, ?component=, ?limit=)
  GET  /api/stream         - Server-Sent Events of committed changes (?streams=a,b)
  POST /api/tick           - Run one orchestrator tick now
  POST /api/test-alert     - Send a synthetic alert through the given channels

Started via: python main.py web [--port 8080] [--host 0.0.0.0]
"""
import json
import logging
from datetime import datetime, timezone

from flask import Flask, Response, jsonify, request, stream_with_context

from __version__ import __version__
from realtime.hub import STREAMS

logger = logging.getLogger("alertmonitor.web.app")


def _rule_to_dict(rule):
    return {
        "id": rule.id,
        "name": rule.display_name,
        "owner_id": rule.owner_id,
        "target": {"type": rule.target.type.value, "id": rule.target.id,
                   "name": rule.target.name},
        "metric": rule.metric.value,
        "threshold": rule.threshold,
        "enabled": rule.enabled,
        "channels": [c.to_dict() for c in rule.channels],
        "cooldown_minutes": rule.cooldown_minutes,
    }


def _log_to_dict(entry):
    return {
        "id": entry.id,
        "level": entry.level,
        "component": entry.component,
        "message": entry.message,
        "metadata": entry.metadata,
        "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
    }


def _limit(default, maximum):
    try:
        return max(1, min(int(request.args.get("limit", default)), maximum))
    except ValueError:
        return default


def create_app(config: dict, engines: dict) -> Flask:
    """
    Factory function. Receives initialized engines from main.py CLI.

    Args:
        config: Application config dict
        engines: dict with db, orchestrator and hub (RealtimeHub)
    """
    app = Flask(__name__)
    keepalive = config.get("realtime", {}).get("keepalive_seconds", 15)

    @app.route("/api/health")
    def api_health():
        db = engines["db"]
        orchestrator = engines.get("orchestrator")
        hub = engines.get("hub")
        return jsonify({
            "status": "ok",
            "version": __version__,
            "orchestrator_state": orchestrator.state.value if orchestrator else None,
            "subscribers": hub.subscriber_count if hub else 0,
            "rules": db.count_rows("alert_rules"),
            "notifications": db.count_rows("notifications"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route("/api/rules")
    def api_rules():
        db = engines["db"]
        enabled_only = request.args.get("enabled") in ("1", "true", "yes")
        rules = db.active_rules() if enabled_only else db.get_all_rules()
        return jsonify({"rules": [_rule_to_dict(r) for r in rules], "count": len(rules)})

    @app.route("/api/notifications")
    def api_notifications():
        db = engines["db"]
        status = request.args.get("status")
        if status and status not in ("queued", "sent", "failed"):
            return jsonify({"error": f"Unknown status: {status}"}), 400
        rows = db.get_recent_notifications(limit=_limit(50, 500),
                                           rule_id=request.args.get("rule_id"), status=status)
        return jsonify({"notifications": rows, "count": len(rows)})

    @app.route("/api/logs")
    def api_logs():
        db = engines["db"]
        level = request.args.get("level")
        if level and level not in ("debug", "info", "warn", "error"):
            return jsonify({"error": f"Unknown level: {level}"}), 400
        entries = db.get_recent_logs(limit=_limit(100, 1000), level=level,
                                     component=request.args.get("component"))
        return jsonify({"logs": [_log_to_dict(e) for e in entries], "count": len(entries)})

    @app.route("/api/stream")
    def api_stream():
        hub = engines.get("hub")
        if hub is None:
            return jsonify({"error": "Realtime updates are not enabled"}), 503
        raw = request.args.get("streams", "")
        streams = [s.strip() for s in raw.split(",") if s.strip()] or list(STREAMS)
        try:
            sub = hub.subscribe(streams)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        @stream_with_context
        def generate():
            try:
                yield ": connected\n\n"
                while not sub.closed:
                    event = sub.get(timeout=keepalive)
                    if event is None:
                        yield ": keepalive\n\n"
                        continue
                    yield (f"id: {event.seq}\nevent: {event.stream}\n"
                           f"data: {json.dumps(event.to_dict(), default=str)}\n\n")
                if sub.dropped:
                    yield "event: dropped\ndata: {}\n\n"
            finally:
                sub.close()

        return Response(generate(), mimetype="text/event-stream",
                        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})

    @app.route("/api/tick", methods=["POST"])
    def api_tick():
        summary = engines["orchestrator"].run_tick()
        return jsonify(summary.to_dict()), (500 if summary.aborted else 200)

    @app.route("/api/test-alert", methods=["POST"])
    def api_test_alert():
        body = request.get_json(silent=True) or {}
        try:
            target = body["target"]
            channels = body["channels"]
            results = engines["orchestrator"].send_test_alert(
                target=target,
                metric=body.get("metric", "cpu"),
                current_value=body.get("current_value", 95.0),
                threshold=body.get("threshold", 80.0),
                channels=channels,
            )
        except (KeyError, TypeError, ValueError) as e:
            return jsonify({"error": f"Invalid test alert request: {e}"}), 400

        delivered = any(r.ok for r in results)
        return jsonify({
            "success": delivered,
            "results": [r.to_dict() for r in results],
        }), (200 if delivered else 502)

    return app
