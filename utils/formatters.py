"""Formatting utilities for alert messages and CLI display."""
from datetime import datetime, timezone

from models.enums import MetricKind

METRIC_LABELS = {
    MetricKind.CPU: "High CPU usage",
    MetricKind.MEMORY: "High memory usage",
    MetricKind.DISK: "High disk usage",
    MetricKind.RESPONSE_TIME: "High response time",
    MetricKind.ERROR_COUNT: "Error count above limit",
    MetricKind.STATUS: "Server/Application offline",
}

METRIC_UNITS = {
    MetricKind.CPU: "%",
    MetricKind.MEMORY: "%",
    MetricKind.DISK: "%",
    MetricKind.RESPONSE_TIME: "ms",
    MetricKind.ERROR_COUNT: "",
    MetricKind.STATUS: "",
}


def metric_label(kind):
    """Human-readable name for a metric kind. Unknown kinds pass through."""
    try:
        return METRIC_LABELS[MetricKind.parse(kind)]
    except ValueError:
        return str(kind)


def format_metric_value(kind, value):
    """Format a metric value with its unit: 85.0 -> '85.0%', 'down' -> 'down'."""
    if value is None:
        return "N/A"
    kind = MetricKind.parse(kind)
    if kind is MetricKind.STATUS:
        return str(getattr(value, "value", value))
    if kind is MetricKind.ERROR_COUNT:
        return f"{int(float(value))}"
    return f"{float(value):.1f}{METRIC_UNITS[kind]}"


def format_timestamp(ts):
    """Format a datetime to human-readable string."""
    if ts is None:
        return "N/A"
    if isinstance(ts, str):
        return ts
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%d %H:%M:%S UTC")


def time_ago(dt):
    """Return human-readable time since dt. E.g., '3h ago', '2d ago'."""
    if dt is None:
        return "N/A"
    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt)
    now = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = now - dt
    seconds = int(delta.total_seconds())

    if seconds < 60:
        return f"{seconds}s ago"
    elif seconds < 3600:
        return f"{seconds // 60}m ago"
    elif seconds < 86400:
        return f"{seconds // 3600}h ago"
    else:
        return f"{seconds // 86400}d ago"
