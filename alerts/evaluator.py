"""Threshold evaluation: pure mapping of (rule, latest sample) to a violation decision."""
from datetime import datetime, timezone

from models.alerts import ViolationDecision
from models.enums import HealthState
from models.metrics import CpuUsage, DiskUsage, ErrorCount, MemoryUsage, ResponseTime, Status


def _numeric_violation(value, threshold):
    return value >= threshold


def _reading_violates(reading, threshold):
    if isinstance(reading, Status):
        # Threshold is ignored for status rules.
        return reading.state is HealthState.DOWN
    if isinstance(reading, (CpuUsage, MemoryUsage, DiskUsage, ResponseTime, ErrorCount)):
        return _numeric_violation(reading.value, float(threshold))
    raise TypeError(f"Unsupported reading type: {type(reading).__name__}")


def evaluate(rule, sample, now=None):
    """Decide whether `rule` is violated by `sample`.

    A missing sample, or a sample without the rule's metric, fails closed:
    violated=False with data_available=False. Logging that case is up to the caller.
    """
    now = now or datetime.now(timezone.utc)
    if sample is not None and sample.entity.id != rule.target.id:
        raise ValueError(
            f"Sample for {sample.entity.id} does not belong to rule {rule.id} "
            f"target {rule.target.id}"
        )

    reading = sample.get(rule.metric) if sample is not None else None
    if reading is None:
        return ViolationDecision(
            rule_id=rule.id,
            current_value=None,
            threshold=rule.threshold,
            timestamp=now,
            violated=False,
            data_available=False,
        )

    return ViolationDecision(
        rule_id=rule.id,
        current_value=reading.value,
        threshold=rule.threshold,
        timestamp=now,
        violated=_reading_violates(reading, rule.threshold),
    )


def evaluate_all(rules, samples_by_entity, now=None):
    """Evaluate each rule against the newest sample of its target entity."""
    now = now or datetime.now(timezone.utc)
    return [evaluate(rule, samples_by_entity.get(rule.target.id), now) for rule in rules]
