"""In-process fan-out of committed store changes to live subscribers."""
import queue
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger("alertmonitor.realtime")

STREAMS = ("metric_samples", "alert_rules", "notifications", "system_logs")


@dataclass(frozen=True)
class ChangeEvent:
    seq: int
    stream: str
    type: str
    row: dict
    committed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "seq": self.seq,
            "stream": self.stream,
            "type": self.type,
            "row": self.row,
            "committed_at": self.committed_at.isoformat(),
        }


class Subscription:
    """A live, bounded view of one or more streams.

    Events arrive in commit order. When the buffer overflows the hub drops the
    subscription; the consumer sees `dropped` and must subscribe again. Nothing
    published in between is replayed.
    """

    def __init__(self, hub, streams, buffer_size):
        self.hub = hub
        self.streams = frozenset(streams)
        self._queue = queue.Queue(maxsize=buffer_size)
        self.closed = False
        self.dropped = False

    def _offer(self, event):
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            return False

    def get(self, timeout=None):
        """Next event, or None when the timeout passes or the subscription is closed
        and drained."""
        if self.closed and self._queue.empty():
            return None
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __iter__(self):
        while True:
            event = self.get(timeout=0.5)
            if event is not None:
                yield event
            elif self.closed:
                return

    def close(self):
        if not self.closed:
            self.closed = True
            self.hub._remove(self)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class RealtimeHub:
    def __init__(self, default_buffer=100):
        self.default_buffer = default_buffer
        self._lock = threading.Lock()
        self._subscribers = []
        self._seq = 0

    def subscribe(self, streams=None, buffer_size=None):
        streams = tuple(streams or STREAMS)
        unknown = [s for s in streams if s not in STREAMS]
        if unknown:
            raise ValueError(f"Unknown stream(s): {', '.join(unknown)}")
        sub = Subscription(self, streams, buffer_size or self.default_buffer)
        with self._lock:
            self._subscribers.append(sub)
        logger.debug(f"Subscriber added for {', '.join(streams)}")
        return sub

    def publish(self, stream, event_type, row):
        """Deliver one change to every live subscriber of `stream`. Never blocks."""
        if stream not in STREAMS:
            raise ValueError(f"Unknown stream: {stream}")
        with self._lock:
            self._seq += 1
            event = ChangeEvent(seq=self._seq, stream=stream, type=event_type, row=dict(row))
            for sub in list(self._subscribers):
                if stream not in sub.streams:
                    continue
                if not sub._offer(event):
                    sub.dropped = True
                    sub.closed = True
                    self._subscribers.remove(sub)
                    logger.warning(f"Dropped slow subscriber on {stream} at seq {event.seq}")
        return event

    def _remove(self, sub):
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    @property
    def subscriber_count(self):
        with self._lock:
            return len(self._subscribers)
