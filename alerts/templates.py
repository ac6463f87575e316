"""Render channel-appropriate notification messages from a violation."""
import json
import re

from models.enums import ChannelType, EntityType, MetricKind
from utils.formatters import format_metric_value, format_timestamp, metric_label

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

ENTITY_LABELS = {
    EntityType.SERVER: "Server",
    EntityType.APPLICATION: "Application",
}


def build_variables(rule, violation, entity=None):
    """Values available to message templates."""
    entity = entity or rule.target
    return {
        "rule_id": rule.id,
        "rule_name": rule.display_name,
        "metric": metric_label(rule.metric),
        "metric_kind": rule.metric.value,
        "entity_id": entity.id,
        "entity_name": entity.display_name,
        "entity_type": ENTITY_LABELS.get(entity.type, entity.type.value),
        "current_value": format_metric_value(rule.metric, violation.current_value),
        "threshold": format_metric_value(rule.metric, violation.threshold)
        if rule.metric is not MetricKind.STATUS else "down",
        "timestamp": format_timestamp(violation.timestamp),
    }


def replace_placeholders(template, variables):
    """Substitute {{name}} placeholders. Unknown names are left as written."""
    def _sub(match):
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        return "N/A" if value is None or value == "" else str(value)
    return _PLACEHOLDER.sub(_sub, template)


def _email(v, prefix):
    subject = f"{prefix}ALERT: {v['metric']} - {v['entity_name']}"
    body = "\n".join([
        f"An alert was detected on your {v['entity_type'].lower()}: {v['entity_name']}",
        "",
        f"{v['metric']}",
        f"  Current value: {v['current_value']}",
        f"  Threshold:     {v['threshold']}",
        f"  Time:          {v['timestamp']}",
        "",
        f"Rule: {v['rule_name']} ({v['rule_id']})",
    ])
    return f"{subject}\n{body}"


def _whatsapp(v, prefix):
    return "\n".join([
        f"*{prefix}ALERT: {v['metric']}*",
        "",
        f"*{v['entity_type']}:* {v['entity_name']}",
        f"*Problem:* {v['metric']} at {v['current_value']} (limit: {v['threshold']})",
        f"*Time:* {v['timestamp']}",
    ])


def _webhook(v, test_mode):
    return json.dumps({
        "event": "alert.test" if test_mode else "alert.triggered",
        "rule_id": v["rule_id"],
        "entity": {"id": v["entity_id"], "name": v["entity_name"], "type": v["entity_type"]},
        "metric": v["metric_kind"],
        "current_value": v["current_value"],
        "threshold": v["threshold"],
        "timestamp": v["timestamp"],
    }, sort_keys=True)


def _line(v, prefix):
    return (f"{prefix}[{v['entity_name']}] {v['metric']}: "
            f"{v['current_value']} (threshold {v['threshold']}) at {v['timestamp']}")


def render_message(target, rule, violation, entity=None, test_mode=False):
    """Render the message for one channel target.

    Email messages carry the subject on their first line. A custom template on
    the target replaces the default layout.
    """
    variables = build_variables(rule, violation, entity)
    prefix = "TEST - " if test_mode else ""
    if target.template:
        return prefix + replace_placeholders(target.template, variables)

    if target.channel is ChannelType.EMAIL:
        return _email(variables, prefix)
    if target.channel is ChannelType.WHATSAPP:
        return _whatsapp(variables, prefix)
    if target.channel is ChannelType.WEBHOOK:
        return _webhook(variables, test_mode)
    return _line(variables, prefix)
