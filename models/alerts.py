"""Dataclasses for alert rules, cooldowns, notifications and tick summaries."""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from models.enums import ChannelType, DeliveryStatus, MetricKind, TickState
from models.metrics import EntityRef


@dataclass(frozen=True)
class ChannelTarget:
    channel: ChannelType
    destination: str
    template: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "channel", ChannelType(self.channel))

    def to_dict(self):
        d = {"type": self.channel.value, "destination": self.destination}
        if self.template:
            d["template"] = self.template
        return d

    @classmethod
    def from_dict(cls, d):
        return cls(
            channel=d.get("type") or d.get("channel"),
            destination=str(d.get("destination", "")),
            template=d.get("template"),
        )


@dataclass(frozen=True)
class AlertRule:
    id: str
    owner_id: str
    target: EntityRef
    metric: MetricKind
    threshold: float = 0.0
    enabled: bool = True
    channels: tuple = ()
    cooldown_minutes: Optional[float] = None
    name: str = ""

    def __post_init__(self):
        if not isinstance(self.target, EntityRef):
            raise ValueError(f"rule {self.id}: exactly one target entity is required")
        object.__setattr__(self, "metric", MetricKind.parse(self.metric))
        object.__setattr__(self, "channels", tuple(self.channels))
        if self.enabled and not self.channels:
            raise ValueError(f"rule {self.id}: enabled rules need at least one channel")

    @property
    def cooldown(self):
        if self.cooldown_minutes is None:
            return None
        return timedelta(minutes=self.cooldown_minutes)

    @property
    def display_name(self):
        return self.name or f"{self.metric.value} on {self.target.display_name}"


@dataclass(frozen=True)
class ViolationDecision:
    rule_id: str
    current_value: object
    threshold: object
    timestamp: datetime
    violated: bool
    data_available: bool = True


@dataclass(frozen=True)
class CooldownKey:
    rule_id: str
    entity_id: str
    metric: MetricKind

    def __post_init__(self):
        object.__setattr__(self, "metric", MetricKind.parse(self.metric))


@dataclass
class CooldownRecord:
    key: CooldownKey
    last_sent: datetime
    cooldown: timedelta = timedelta(minutes=15)

    @property
    def expires_at(self):
        return self.last_sent + self.cooldown


@dataclass
class NotificationRecord:
    id: Optional[int] = None
    rule_id: str = ""
    entity_id: str = ""
    channel: str = ""
    destination: str = ""
    message: str = ""
    status: DeliveryStatus = DeliveryStatus.QUEUED
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None


@dataclass
class ChannelResult:
    channel: ChannelType
    destination: str
    status: DeliveryStatus
    error: Optional[str] = None
    notification_id: Optional[int] = None
    duration_ms: int = 0

    @property
    def ok(self):
        return self.status is DeliveryStatus.SENT

    def to_dict(self):
        return {
            "channel": self.channel.value,
            "destination": self.destination,
            "status": self.status.value,
            "error": self.error,
            "notification_id": self.notification_id,
            "duration_ms": self.duration_ms,
        }


@dataclass
class SystemLogEntry:
    level: str
    component: str
    message: str
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None


@dataclass
class TickSummary:
    tick_id: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    state: TickState = TickState.IDLE
    rules_evaluated: int = 0
    violations: int = 0
    notifications_sent: int = 0
    deliveries_sent: int = 0
    deliveries_failed: int = 0
    suppressed: int = 0
    data_unavailable: int = 0
    errors: int = 0
    timed_out: int = 0
    aborted: bool = False

    def to_dict(self):
        d = asdict(self)
        d["started_at"] = self.started_at.isoformat()
        d["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        d["state"] = self.state.value
        return d
