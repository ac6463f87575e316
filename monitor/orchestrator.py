"""Periodic alert orchestration: fetch rules and samples, evaluate, gate, dispatch, log.

A tick walks idle -> fetching -> evaluating -> dispatching -> logging -> idle.
Several orchestrators may run against the same stores; duplicate suppression
relies only on the cooldown store's atomic claim.
"""
import time
import uuid
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone

from alerts.errors import CooldownStoreError, DataUnavailable
from alerts.evaluator import evaluate
from models.alerts import AlertRule, ChannelTarget, TickSummary, ViolationDecision
from models.enums import EntityType, MetricKind, TickState
from models.metrics import EntityRef

logger = logging.getLogger("alertmonitor.orchestrator")

COMPONENT = "orchestrator"


def utcnow():
    return datetime.now(timezone.utc)


class AlertOrchestrator:
    def __init__(self, rule_store, metric_store, cooldowns, dispatcher, system_log,
                 lookback=timedelta(minutes=5), max_parallel=20, tick_deadline=60.0,
                 clock=utcnow):
        self.rule_store = rule_store
        self.metric_store = metric_store
        self.cooldowns = cooldowns
        self.dispatcher = dispatcher
        self.system_log = system_log
        self.lookback = lookback
        self.max_parallel = max_parallel
        self.tick_deadline = tick_deadline
        self.clock = clock
        self._state = TickState.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self):
        with self._state_lock:
            return self._state

    def _enter(self, state):
        with self._state_lock:
            self._state = state
        logger.debug(f"Tick state -> {state.value}")

    def run_tick(self, now=None):
        """Run one full evaluation cycle and return its summary."""
        now = now or self.clock()
        summary = TickSummary(tick_id=uuid.uuid4().hex[:12], started_at=now)
        try:
            self._enter(TickState.FETCHING)
            fetched = self._fetch(now, summary)
            if fetched is None:
                return summary
            rules, samples = fetched

            self._enter(TickState.EVALUATING)
            approved = self._evaluate(rules, samples, now, summary)

            self._enter(TickState.DISPATCHING)
            self._dispatch(approved, summary, now)

            self._enter(TickState.LOGGING)
            summary.finished_at = self.clock()
            summary.state = TickState.IDLE
            self.system_log.info(COMPONENT, "tick complete", **_counts(summary))
            return summary
        finally:
            self._enter(TickState.IDLE)

    def _fetch(self, now, summary):
        try:
            rules = list(self.rule_store.active_rules())
            entity_ids = sorted({r.target.id for r in rules})
            kinds = sorted({r.metric for r in rules}, key=lambda k: k.value)
            rows = self.metric_store.latest_samples(entity_ids, kinds, now - self.lookback) \
                if rules else []
        except Exception as e:
            summary.aborted = True
            summary.finished_at = self.clock()
            self.system_log.error(COMPONENT, "Tick aborted: could not load rules or metrics",
                                  error=str(e), tick_id=summary.tick_id)
            return None

        # Rows come newest first: keep the first one seen per entity.
        samples = {}
        for sample in rows:
            samples.setdefault(sample.entity.id, sample)
        logger.debug(f"Fetched {len(rules)} active rules, {len(samples)} entities with samples")
        return rules, samples

    def _evaluate(self, rules, samples, now, summary):
        approved = []
        for rule in rules:
            summary.rules_evaluated += 1
            try:
                decision = evaluate(rule, samples.get(rule.target.id), now)
            except Exception as e:
                summary.errors += 1
                self.system_log.error(COMPONENT, f"Evaluation failed for rule {rule.id}",
                                      rule_id=rule.id, error=str(e))
                continue

            if not decision.data_available:
                summary.data_unavailable += 1
                err = DataUnavailable(
                    f"No {rule.metric.value} data for {rule.target.id} in the last "
                    f"{int(self.lookback.total_seconds() // 60)} minutes",
                    rule_id=rule.id, entity_id=rule.target.id, metric=rule.metric.value,
                )
                self.system_log.warn(COMPONENT, str(err), rule_id=err.rule_id,
                                     entity_id=err.entity_id, metric=err.metric)
                continue
            if not decision.violated:
                continue

            summary.violations += 1
            key = self.cooldowns.key_for(rule)
            try:
                acquired = self.cooldowns.try_acquire(key, now, self.cooldowns.cooldown_for(rule))
            except CooldownStoreError as e:
                summary.errors += 1
                self.system_log.error(COMPONENT, f"Cooldown check failed for rule {rule.id}",
                                      rule_id=rule.id, error=str(e))
                continue
            if not acquired:
                summary.suppressed += 1
                logger.debug(f"Rule {rule.id} suppressed by cooldown")
                continue
            approved.append((rule, decision))
        return approved

    def _dispatch(self, approved, summary, now):
        if not approved:
            return
        pool = ThreadPoolExecutor(max_workers=min(self.max_parallel, len(approved)),
                                  thread_name_prefix="alert-dispatch")
        started = time.monotonic()
        futures = {pool.submit(self._notify, rule, decision, now, started): rule
                   for rule, decision in approved}
        done, not_done = wait(futures, timeout=self.tick_deadline)
        for future in not_done:
            future.cancel()
            summary.timed_out += 1
            rule = futures[future]
            self.system_log.error(COMPONENT, f"Dispatch for rule {rule.id} missed the tick deadline",
                                  rule_id=rule.id, deadline_seconds=self.tick_deadline)
        pool.shutdown(wait=False)

        for future in done:
            rule = futures[future]
            try:
                results = future.result()
            except Exception as e:
                summary.errors += 1
                self.system_log.error(COMPONENT, f"Dispatch crashed for rule {rule.id}",
                                      rule_id=rule.id, error=str(e))
                continue
            sent = sum(1 for r in results if r.ok)
            summary.deliveries_sent += sent
            summary.deliveries_failed += len(results) - sent
            if sent:
                summary.notifications_sent += 1

    def _notify(self, rule, decision, tick_now, started):
        results = self.dispatcher.dispatch(decision, rule)
        if any(r.ok for r in results):
            # Stamp the actual send time on the tick's clock.
            sent_at = tick_now + timedelta(seconds=time.monotonic() - started)
            try:
                self.cooldowns.record_sent(self.cooldowns.key_for(rule), sent_at,
                                           self.cooldowns.cooldown_for(rule))
            except CooldownStoreError as e:
                # The claim already holds the window; the send still counts.
                self.system_log.error(COMPONENT, f"Could not stamp cooldown for rule {rule.id}",
                                      rule_id=rule.id, error=str(e))
        return results

    def send_test_alert(self, target, metric, current_value, threshold, channels):
        """Send a synthetic violation through the dispatcher.

        Skips evaluation and cooldown entirely and returns the per-channel results.
        """
        if not isinstance(target, EntityRef):
            target = EntityRef(type=EntityType(target.get("type", "server")),
                               id=target["id"], name=target.get("name", ""))
        channels = tuple(c if isinstance(c, ChannelTarget) else ChannelTarget.from_dict(c)
                         for c in channels)
        if not channels:
            raise ValueError("at least one channel is required for a test alert")
        metric = MetricKind.parse(metric)
        if metric is not MetricKind.STATUS:
            current_value = float(current_value)
            threshold = float(threshold)
        rule = AlertRule(
            id=f"test-{uuid.uuid4().hex[:8]}",
            owner_id="test",
            target=target,
            metric=metric,
            threshold=threshold if metric is not MetricKind.STATUS else 0.0,
            channels=channels,
            name="Test alert",
        )
        decision = ViolationDecision(
            rule_id=rule.id,
            current_value=current_value,
            threshold=threshold,
            timestamp=self.clock(),
            violated=True,
        )
        self.system_log.info(COMPONENT, "Sending test alert", rule_id=rule.id,
                             entity_id=target.id, metric=metric.value,
                             channels=[c.channel.value for c in channels])
        return self.dispatcher.dispatch(decision, rule, test_mode=True)


def _counts(summary):
    return {
        "tick_id": summary.tick_id,
        "rules_evaluated": summary.rules_evaluated,
        "violations": summary.violations,
        "notifications_sent": summary.notifications_sent,
        "deliveries_sent": summary.deliveries_sent,
        "deliveries_failed": summary.deliveries_failed,
        "suppressed": summary.suppressed,
        "data_unavailable": summary.data_unavailable,
        "errors": summary.errors,
        "timed_out": summary.timed_out,
    }
