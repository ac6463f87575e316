"""Typed metric readings and samples for monitored servers and applications."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Optional

from models.enums import EntityType, HealthState, MetricKind


@dataclass(frozen=True)
class EntityRef:
    """A monitored server or application. Exactly one type per reference."""
    type: EntityType
    id: str
    name: str = ""

    def __post_init__(self):
        if not self.id:
            raise ValueError("entity id is required")
        object.__setattr__(self, "type", EntityType(self.type))

    @property
    def display_name(self):
        return self.name or self.id


@dataclass(frozen=True)
class CpuUsage:
    percent: float
    kind: ClassVar[MetricKind] = MetricKind.CPU

    @property
    def value(self):
        return self.percent


@dataclass(frozen=True)
class MemoryUsage:
    percent: float
    kind: ClassVar[MetricKind] = MetricKind.MEMORY

    @property
    def value(self):
        return self.percent


@dataclass(frozen=True)
class DiskUsage:
    percent: float
    kind: ClassVar[MetricKind] = MetricKind.DISK

    @property
    def value(self):
        return self.percent


@dataclass(frozen=True)
class ResponseTime:
    ms: float
    kind: ClassVar[MetricKind] = MetricKind.RESPONSE_TIME

    @property
    def value(self):
        return self.ms


@dataclass(frozen=True)
class ErrorCount:
    count: int
    kind: ClassVar[MetricKind] = MetricKind.ERROR_COUNT

    @property
    def value(self):
        return self.count


@dataclass(frozen=True)
class Status:
    state: HealthState
    kind: ClassVar[MetricKind] = MetricKind.STATUS

    @property
    def value(self):
        return self.state.value


NUMERIC_READINGS = {
    MetricKind.CPU: CpuUsage,
    MetricKind.MEMORY: MemoryUsage,
    MetricKind.DISK: DiskUsage,
    MetricKind.RESPONSE_TIME: ResponseTime,
    MetricKind.ERROR_COUNT: ErrorCount,
}


def parse_reading(kind, raw):
    """Build the typed reading for a metric kind from a raw stored value."""
    kind = MetricKind.parse(kind)
    if kind is MetricKind.STATUS:
        return Status(HealthState.parse(raw))
    if raw is None or isinstance(raw, bool):
        raise ValueError(f"{kind.value}: expected a number, got {raw!r}")
    try:
        number = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{kind.value}: expected a number, got {raw!r}") from None
    if kind is MetricKind.ERROR_COUNT:
        return ErrorCount(int(number))
    return NUMERIC_READINGS[kind](number)


@dataclass(frozen=True)
class MetricSample:
    entity: EntityRef
    readings: dict = field(default_factory=dict)
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None

    def get(self, kind):
        return self.readings.get(MetricKind.parse(kind))

    def to_payload(self):
        """Flatten readings into a JSON-safe {kind: value} dict."""
        return {k.value: r.value for k, r in self.readings.items()}

    @classmethod
    def from_payload(cls, entity, payload, captured_at, sample_id=None):
        readings = {}
        for raw_kind, raw_value in (payload or {}).items():
            reading = parse_reading(raw_kind, raw_value)
            readings[reading.kind] = reading
        return cls(entity=entity, readings=readings, captured_at=captured_at, id=sample_id)
