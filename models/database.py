"""SQLite database for monitored entities, alert rules, metric samples, cooldowns,
notifications and system logs."""
import json
import sqlite3
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

from alerts.errors import CooldownStoreError, StoreError
from models.alerts import (
    AlertRule, ChannelTarget, CooldownKey, CooldownRecord, NotificationRecord, SystemLogEntry,
)
from models.enums import DeliveryStatus, EntityType, LogLevel, MetricKind
from models.metrics import EntityRef, MetricSample, parse_reading

logger = logging.getLogger("alertmonitor.db")


def _iso(dt):
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_dt(value):
    if value is None:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class Database:
    def __init__(self, db_path="data/monitor.db", publisher=None):
        self.db_path = db_path
        self.conn = None
        self.publisher = publisher
        self._lock = threading.RLock()

    def connect(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()
        return self

    def close(self):
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS monitored_entities (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL CHECK (type IN ('server', 'application')),
                name TEXT NOT NULL DEFAULT '',
                address TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS alert_rules (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT DEFAULT '',
                entity_type TEXT NOT NULL CHECK (entity_type IN ('server', 'application')),
                entity_id TEXT NOT NULL,
                metric TEXT NOT NULL,
                threshold REAL NOT NULL DEFAULT 0,
                enabled INTEGER NOT NULL DEFAULT 1,
                channels TEXT NOT NULL DEFAULT '[]',
                cooldown_minutes REAL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_rules_enabled
                ON alert_rules(enabled);

            CREATE TABLE IF NOT EXISTS metric_samples (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                readings TEXT NOT NULL,
                captured_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_samples_entity_time
                ON metric_samples(entity_id, captured_at);

            CREATE TABLE IF NOT EXISTS alert_cooldowns (
                rule_id TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                metric TEXT NOT NULL,
                last_sent TEXT NOT NULL,
                last_sent_ts REAL NOT NULL,
                cooldown_seconds REAL NOT NULL,
                PRIMARY KEY (rule_id, entity_id, metric)
            );

            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                rule_id TEXT NOT NULL,
                entity_id TEXT,
                channel TEXT NOT NULL,
                destination TEXT,
                message TEXT,
                status TEXT NOT NULL,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_created
                ON notifications(created_at);

            CREATE TABLE IF NOT EXISTS system_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                level TEXT NOT NULL,
                component TEXT NOT NULL,
                message TEXT NOT NULL,
                metadata TEXT,
                timestamp TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_logs_timestamp
                ON system_logs(timestamp);
        """)
        self.conn.commit()

    def _publish(self, stream, event, row):
        # Called with the lock held so subscribers see commit order.
        if self.publisher is None:
            return
        try:
            self.publisher.publish(stream, event, row)
        except Exception as e:
            logger.warning(f"Realtime publish failed for {stream}: {e}")

    # --- Monitored Entities ---

    def save_entity(self, entity, address=None):
        with self._lock:
            try:
                self.conn.execute("""
                    INSERT INTO monitored_entities (id, type, name, address, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        type = excluded.type, name = excluded.name, address = excluded.address
                """, (entity.id, entity.type.value, entity.name, address,
                      _iso(datetime.now(timezone.utc))))
                self.conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Saving entity {entity.id} failed: {e}") from e

    def get_entity(self, entity_id):
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM monitored_entities WHERE id = ?", (entity_id,)
            ).fetchone()
        if row is None:
            return None
        return EntityRef(type=row["type"], id=row["id"], name=row["name"])

    # --- Alert Rules ---

    def save_rule(self, rule):
        row = {
            "id": rule.id,
            "owner_id": rule.owner_id,
            "name": rule.name,
            "entity_type": rule.target.type.value,
            "entity_id": rule.target.id,
            "metric": rule.metric.value,
            "threshold": float(rule.threshold),
            "enabled": int(rule.enabled),
            "channels": json.dumps([c.to_dict() for c in rule.channels]),
            "cooldown_minutes": rule.cooldown_minutes,
            "updated_at": _iso(datetime.now(timezone.utc)),
        }
        with self._lock:
            try:
                exists = self.conn.execute(
                    "SELECT 1 FROM alert_rules WHERE id = ?", (rule.id,)
                ).fetchone() is not None
                self.conn.execute("""
                    INSERT OR REPLACE INTO alert_rules
                    (id, owner_id, name, entity_type, entity_id, metric, threshold,
                     enabled, channels, cooldown_minutes, updated_at)
                    VALUES (:id, :owner_id, :name, :entity_type, :entity_id, :metric, :threshold,
                            :enabled, :channels, :cooldown_minutes, :updated_at)
                """, row)
                if rule.target.name:
                    self.conn.execute("""
                        INSERT OR IGNORE INTO monitored_entities (id, type, name, created_at)
                        VALUES (?, ?, ?, ?)
                    """, (rule.target.id, rule.target.type.value, rule.target.name, row["updated_at"]))
                self.conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Saving rule {rule.id} failed: {e}") from e
            self._publish("alert_rules", "UPDATE" if exists else "INSERT", row)

    def set_rule_enabled(self, rule_id, enabled):
        with self._lock:
            try:
                cur = self.conn.execute(
                    "UPDATE alert_rules SET enabled = ?, updated_at = ? WHERE id = ?",
                    (int(enabled), _iso(datetime.now(timezone.utc)), rule_id),
                )
                self.conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Updating rule {rule_id} failed: {e}") from e
            if cur.rowcount:
                self._publish("alert_rules", "UPDATE", {"id": rule_id, "enabled": int(enabled)})
            return cur.rowcount > 0

    def _rule_from_row(self, row):
        channels = [ChannelTarget.from_dict(c) for c in json.loads(row["channels"] or "[]")]
        return AlertRule(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"] or "",
            target=EntityRef(type=row["entity_type"], id=row["entity_id"],
                             name=row["entity_name"] or ""),
            metric=row["metric"],
            threshold=row["threshold"],
            enabled=bool(row["enabled"]),
            channels=channels,
            cooldown_minutes=row["cooldown_minutes"],
        )

    def _query_rules(self, where="", params=()):
        query = """
            SELECT r.*, e.name AS entity_name
            FROM alert_rules r
            LEFT JOIN monitored_entities e ON e.id = r.entity_id
        """ + where + " ORDER BY r.id"
        with self._lock:
            try:
                rows = self.conn.execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Reading alert rules failed: {e}") from e
        rules = []
        for row in rows:
            try:
                rules.append(self._rule_from_row(row))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping invalid alert rule {row['id']}: {e}")
        return rules

    def active_rules(self):
        return self._query_rules("WHERE r.enabled = 1")

    def get_all_rules(self):
        return self._query_rules()

    def get_rule(self, rule_id):
        rules = self._query_rules("WHERE r.id = ?", (rule_id,))
        return rules[0] if rules else None

    # --- Metric Samples ---

    def save_sample(self, sample):
        payload = sample.to_payload()
        row = {
            "entity_type": sample.entity.type.value,
            "entity_id": sample.entity.id,
            "readings": json.dumps(payload),
            "captured_at": _iso(sample.captured_at),
        }
        with self._lock:
            try:
                cur = self.conn.execute("""
                    INSERT INTO metric_samples (entity_type, entity_id, readings, captured_at)
                    VALUES (:entity_type, :entity_id, :readings, :captured_at)
                """, row)
                self.conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Saving sample for {sample.entity.id} failed: {e}") from e
            row["id"] = cur.lastrowid
            row["readings"] = payload
            self._publish("metric_samples", "INSERT", row)
        logger.debug(f"Saved sample for {sample.entity.id} at {row['captured_at']}")
        return row["id"]

    def latest_samples(self, entity_ids, metric_kinds=None, since=None):
        """Samples for the given entities captured at or after `since`, newest first.

        Readings are narrowed to `metric_kinds` when given. Malformed readings are
        skipped rather than failing the whole read.
        """
        entity_ids = list(entity_ids)
        if not entity_ids:
            return []
        kinds = {MetricKind.parse(k) for k in metric_kinds} if metric_kinds else None
        placeholders = ",".join("?" for _ in entity_ids)
        query = f"""
            SELECT s.*, e.name AS entity_name
            FROM metric_samples s
            LEFT JOIN monitored_entities e ON e.id = s.entity_id
            WHERE s.entity_id IN ({placeholders})
        """
        params = list(entity_ids)
        if since is not None:
            query += " AND s.captured_at >= ?"
            params.append(_iso(since))
        query += " ORDER BY s.captured_at DESC, s.id DESC"
        with self._lock:
            try:
                rows = self.conn.execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Reading metric samples failed: {e}") from e

        samples = []
        for row in rows:
            entity = EntityRef(type=row["entity_type"], id=row["entity_id"],
                               name=row["entity_name"] or "")
            readings = {}
            for raw_kind, raw_value in json.loads(row["readings"] or "{}").items():
                try:
                    reading = parse_reading(raw_kind, raw_value)
                except ValueError as e:
                    logger.warning(f"Skipping reading in sample {row['id']}: {e}")
                    continue
                if kinds is None or reading.kind in kinds:
                    readings[reading.kind] = reading
            samples.append(MetricSample(entity=entity, readings=readings,
                                        captured_at=_parse_dt(row["captured_at"]), id=row["id"]))
        return samples

    # --- Cooldowns ---

    def get_cooldown(self, key):
        with self._lock:
            try:
                row = self.conn.execute("""
                    SELECT * FROM alert_cooldowns
                    WHERE rule_id = ? AND entity_id = ? AND metric = ?
                """, (key.rule_id, key.entity_id, key.metric.value)).fetchone()
            except sqlite3.Error as e:
                raise CooldownStoreError(f"Reading cooldown {key} failed: {e}") from e
        if row is None:
            return None
        return CooldownRecord(
            key=key,
            last_sent=_parse_dt(row["last_sent"]),
            cooldown=timedelta(seconds=row["cooldown_seconds"]),
        )

    def upsert_cooldown(self, key, last_sent, cooldown):
        with self._lock:
            try:
                self.conn.execute("""
                    INSERT INTO alert_cooldowns
                    (rule_id, entity_id, metric, last_sent, last_sent_ts, cooldown_seconds)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(rule_id, entity_id, metric) DO UPDATE SET
                        last_sent = excluded.last_sent,
                        last_sent_ts = excluded.last_sent_ts,
                        cooldown_seconds = excluded.cooldown_seconds
                """, (key.rule_id, key.entity_id, key.metric.value, _iso(last_sent),
                      last_sent.timestamp(), cooldown.total_seconds()))
                self.conn.commit()
            except sqlite3.Error as e:
                raise CooldownStoreError(f"Upserting cooldown {key} failed: {e}") from e

    def claim_cooldown(self, key, now, cooldown):
        """Atomically record `now` for `key` unless an unexpired record exists.

        Returns True when this caller won the claim. The expiry test runs inside
        the same INSERT .. ON CONFLICT statement, so concurrent callers (threads
        or separate processes sharing the file) cannot both succeed.
        """
        with self._lock:
            try:
                cur = self.conn.execute("""
                    INSERT INTO alert_cooldowns
                    (rule_id, entity_id, metric, last_sent, last_sent_ts, cooldown_seconds)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(rule_id, entity_id, metric) DO UPDATE SET
                        last_sent = excluded.last_sent,
                        last_sent_ts = excluded.last_sent_ts,
                        cooldown_seconds = excluded.cooldown_seconds
                    WHERE alert_cooldowns.last_sent_ts + alert_cooldowns.cooldown_seconds
                          <= excluded.last_sent_ts
                """, (key.rule_id, key.entity_id, key.metric.value, _iso(now),
                      now.timestamp(), cooldown.total_seconds()))
                self.conn.commit()
            except sqlite3.Error as e:
                raise CooldownStoreError(f"Claiming cooldown {key} failed: {e}") from e
            return cur.rowcount > 0

    # --- Notifications ---

    def create_notification(self, record):
        row = {
            "rule_id": record.rule_id,
            "entity_id": record.entity_id,
            "channel": record.channel,
            "destination": record.destination,
            "message": record.message,
            "status": DeliveryStatus(record.status).value,
            "error": record.error,
            "created_at": _iso(record.created_at),
        }
        with self._lock:
            try:
                cur = self.conn.execute("""
                    INSERT INTO notifications
                    (rule_id, entity_id, channel, destination, message, status, error, created_at)
                    VALUES (:rule_id, :entity_id, :channel, :destination, :message, :status,
                            :error, :created_at)
                """, row)
                self.conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Saving notification for rule {record.rule_id} failed: {e}") from e
            row["id"] = cur.lastrowid
            self._publish("notifications", "INSERT", row)
        record.id = row["id"]
        return record.id

    def update_notification_status(self, notification_id, status, error=None):
        status = DeliveryStatus(status).value
        updated_at = _iso(datetime.now(timezone.utc))
        with self._lock:
            try:
                cur = self.conn.execute("""
                    UPDATE notifications SET status = ?, error = ?, updated_at = ?
                    WHERE id = ? AND status = 'queued'
                """, (status, error, updated_at, notification_id))
                self.conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Updating notification {notification_id} failed: {e}") from e
            if cur.rowcount:
                self._publish("notifications", "UPDATE", {
                    "id": notification_id, "status": status, "error": error,
                    "updated_at": updated_at,
                })
            return cur.rowcount > 0

    def get_recent_notifications(self, limit=50, rule_id=None, status=None):
        query = "SELECT * FROM notifications WHERE 1=1"
        params = []
        if rule_id:
            query += " AND rule_id = ?"
            params.append(rule_id)
        if status:
            query += " AND status = ?"
            params.append(DeliveryStatus(status).value)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [dict(r) for r in rows]

    def get_notification(self, notification_id):
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM notifications WHERE id = ?", (notification_id,)
            ).fetchone()
        if row is None:
            return None
        return NotificationRecord(
            id=row["id"], rule_id=row["rule_id"], entity_id=row["entity_id"],
            channel=row["channel"], destination=row["destination"], message=row["message"],
            status=DeliveryStatus(row["status"]), error=row["error"],
            created_at=_parse_dt(row["created_at"]), updated_at=_parse_dt(row["updated_at"]),
        )

    # --- System Logs ---

    def append_log(self, level, component, message, metadata=None, timestamp=None):
        row = {
            "level": LogLevel(level).value,
            "component": component,
            "message": message,
            "metadata": json.dumps(metadata or {}, default=str),
            "timestamp": _iso(timestamp or datetime.now(timezone.utc)),
        }
        with self._lock:
            try:
                cur = self.conn.execute("""
                    INSERT INTO system_logs (level, component, message, metadata, timestamp)
                    VALUES (:level, :component, :message, :metadata, :timestamp)
                """, row)
                self.conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Appending system log failed: {e}") from e
            row["id"] = cur.lastrowid
            self._publish("system_logs", "INSERT", row)
        return row["id"]

    def get_recent_logs(self, limit=100, level=None, component=None):
        query = "SELECT * FROM system_logs WHERE 1=1"
        params = []
        if level:
            query += " AND level = ?"
            params.append(LogLevel(level).value)
        if component:
            query += " AND component = ?"
            params.append(component)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [
            SystemLogEntry(
                id=r["id"], level=r["level"], component=r["component"], message=r["message"],
                metadata=json.loads(r["metadata"] or "{}"), timestamp=_parse_dt(r["timestamp"]),
            )
            for r in rows
        ]

    def count_rows(self, table):
        if table not in {"monitored_entities", "alert_rules", "metric_samples",
                         "alert_cooldowns", "notifications", "system_logs"}:
            raise ValueError(f"Unknown table: {table}")
        with self._lock:
            row = self.conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()
        return row["cnt"]
