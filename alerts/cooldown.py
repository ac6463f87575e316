"""Cooldown gate: suppresses repeat notifications for the same rule/entity/metric."""
import logging
from datetime import timedelta

from alerts.errors import CooldownStoreError
from models.alerts import CooldownKey

logger = logging.getLogger("alertmonitor.alerts.cooldown")

DEFAULT_COOLDOWN = timedelta(minutes=15)


def _call_store(action, key, func, *args):
    try:
        return func(*args)
    except CooldownStoreError:
        raise
    except Exception as e:
        raise CooldownStoreError(f"{action} cooldown {key} failed: {e}") from e


class CooldownManager:
    """Decides from durable state whether a violation may notify now.

    Mutual exclusion between overlapping ticks, or between several running
    orchestrators, is delegated to the store's conditional upsert
    (`claim_cooldown`). Nothing here holds an application-level lock.
    """

    def __init__(self, store, default_cooldown=DEFAULT_COOLDOWN):
        self.store = store
        self.default_cooldown = default_cooldown

    @staticmethod
    def key_for(rule):
        return CooldownKey(rule_id=rule.id, entity_id=rule.target.id, metric=rule.metric)

    def cooldown_for(self, rule):
        return rule.cooldown if rule.cooldown is not None else self.default_cooldown

    def _resolve(self, cooldown):
        return cooldown if cooldown is not None else self.default_cooldown

    def should_notify(self, key, now, cooldown=None):
        """True iff no record exists for `key` or its cooldown has elapsed.

        Read-only. The duration stored with the record wins over `cooldown`.
        """
        record = _call_store("Reading", key, self.store.get_cooldown, key)
        if record is None:
            return True
        duration = record.cooldown if record.cooldown is not None else self._resolve(cooldown)
        return now >= record.last_sent + duration

    def record_sent(self, key, now, cooldown=None):
        """Upsert `now` as the last notification time for `key`."""
        _call_store("Upserting", key, self.store.upsert_cooldown, key, now, self._resolve(cooldown))
        logger.debug(f"Cooldown recorded for {key.rule_id}/{key.entity_id}/{key.metric.value}")

    def try_acquire(self, key, now, cooldown=None):
        """Check and record in one storage-level step. Returns False when suppressed."""
        acquired = _call_store("Claiming", key, self.store.claim_cooldown,
                               key, now, self._resolve(cooldown))
        if not acquired:
            logger.debug(f"Cooldown active for {key.rule_id}/{key.entity_id}/{key.metric.value}")
        return acquired
