"""Data models."""
from models.enums import MetricKind, EntityType, HealthState, ChannelType, DeliveryStatus, LogLevel, TickState
from models.metrics import EntityRef, MetricSample, CpuUsage, MemoryUsage, DiskUsage, ResponseTime, ErrorCount, Status
from models.alerts import (
    AlertRule, ChannelTarget, ViolationDecision, CooldownKey, CooldownRecord,
    NotificationRecord, ChannelResult, SystemLogEntry, TickSummary,
)
