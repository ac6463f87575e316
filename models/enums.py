"""Enums for metric kinds, entities, channels, delivery and tick states."""
from enum import Enum


class MetricKind(str, Enum):
    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"
    RESPONSE_TIME = "response_time"
    ERROR_COUNT = "error_count"
    STATUS = "status"

    @classmethod
    def parse(cls, raw):
        """Accept canonical names plus the legacy aliases found in stored rules."""
        if isinstance(raw, cls):
            return raw
        name = str(raw).strip().lower()
        name = _METRIC_ALIASES.get(name, name)
        return cls(name)


_METRIC_ALIASES = {
    "cpu_usage": "cpu",
    "memory_usage": "memory",
    "memoria": "memory",
    "memoria_usage": "memory",
    "disk_usage": "disk",
    "disco": "disk",
    "disco_usage": "disk",
    "errors": "error_count",
    "latency": "response_time",
}


class EntityType(str, Enum):
    SERVER = "server"
    APPLICATION = "application"


class HealthState(str, Enum):
    UP = "up"
    DEGRADED = "degraded"
    DOWN = "down"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw):
        if isinstance(raw, cls):
            return raw
        name = str(raw).strip().lower()
        if name in ("down", "offline", "error", "unreachable"):
            return cls.DOWN
        if name in ("up", "online", "ok", "healthy"):
            return cls.UP
        if name == "degraded":
            return cls.DEGRADED
        return cls.UNKNOWN


class ChannelType(str, Enum):
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    WEBHOOK = "webhook"
    CONSOLE = "console"
    FILE = "file"


class DeliveryStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class TickState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EVALUATING = "evaluating"
    DISPATCHING = "dispatching"
    LOGGING = "logging"
