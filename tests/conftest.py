"""Shared test fixtures."""
import os
import sys
import time
import threading
import pytest
import tempfile

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.database import Database
from models.alerts import AlertRule, ChannelTarget
from models.enums import ChannelType, EntityType
from models.metrics import EntityRef, MetricSample
from datetime import datetime, timezone
from alerts.errors import ChannelSendError

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    db.connect()
    yield db
    db.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


def make_rule(rule_id="r1", entity_id="web-01", metric="cpu", threshold=80.0,
              channels=(("console", ""),), entity_type="server", **kwargs):
    """Build an AlertRule with sensible defaults."""
    return AlertRule(
        id=rule_id,
        owner_id=kwargs.pop("owner_id", "u1"),
        target=EntityRef(type=EntityType(entity_type), id=entity_id,
                         name=kwargs.pop("entity_name", "")),
        metric=metric,
        threshold=threshold,
        channels=tuple(ChannelTarget(ChannelType(c), d) for c, d in channels),
        **kwargs,
    )


def make_sample(entity_id="web-01", captured_at=None, entity_type="server", **readings):
    """Build a MetricSample from keyword readings, e.g. cpu=85, status="down"."""
    return MetricSample.from_payload(
        EntityRef(type=EntityType(entity_type), id=entity_id),
        readings,
        captured_at or NOW,
    )


class FakeChannel:
    """Channel adapter that records sends and can fail or stall on demand."""

    def __init__(self, fail=False, delay=0.0):
        self.fail = fail
        self.delay = delay
        self.sent = []
        self.finished = threading.Event()
        self._lock = threading.Lock()

    def send(self, destination, message):
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail:
                raise ChannelSendError("provider rejected the message")
            with self._lock:
                self.sent.append((destination, message))
        finally:
            self.finished.set()


class MemoryLog:
    """SystemLogger stand-in that keeps entries in a list."""

    def __init__(self):
        self.entries = []
        self._lock = threading.Lock()

    def _add(self, level, component, message, metadata):
        with self._lock:
            self.entries.append((level, component, message, metadata))

    def debug(self, component, message, **metadata):
        self._add("debug", component, message, metadata)

    def info(self, component, message, **metadata):
        self._add("info", component, message, metadata)

    def warn(self, component, message, **metadata):
        self._add("warn", component, message, metadata)

    def error(self, component, message, **metadata):
        self._add("error", component, message, metadata)

    def messages(self, level):
        return [e[2] for e in self.entries if e[0] == level]


@pytest.fixture
def memory_log():
    return MemoryLog()
