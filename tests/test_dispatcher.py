"""Tests for the notification dispatcher."""
import time
import threading
import pytest
from unittest.mock import MagicMock

from alerts.dispatcher import NotificationDispatcher
from alerts.evaluator import evaluate
from models.enums import ChannelType, DeliveryStatus
from conftest import NOW, FakeChannel, make_rule, make_sample


def _violation(rule, **readings):
    return evaluate(rule, make_sample(rule.target.id, **(readings or {"cpu": 95})), NOW)


@pytest.fixture
def rule():
    return make_rule(channels=(("email", "ops@example.com"), ("whatsapp", "+55 11 99999-0000")))


class TestPartialIsolation:
    def test_failing_channel_does_not_affect_others(self, temp_db, memory_log, rule):
        email, whatsapp = FakeChannel(), FakeChannel(fail=True)
        dispatcher = NotificationDispatcher(
            {ChannelType.EMAIL: email, ChannelType.WHATSAPP: whatsapp}, temp_db, memory_log)

        results = dispatcher.dispatch(_violation(rule), rule)

        assert [r.channel for r in results] == [ChannelType.EMAIL, ChannelType.WHATSAPP]
        assert results[0].status is DeliveryStatus.SENT
        assert results[1].status is DeliveryStatus.FAILED
        assert "provider rejected" in results[1].error
        assert len(email.sent) == 1

        by_channel = {n["channel"]: n for n in temp_db.get_recent_notifications()}
        assert by_channel["email"]["status"] == "sent"
        assert by_channel["whatsapp"]["status"] == "failed"
        assert by_channel["whatsapp"]["error"]

    def test_unexpected_exception_becomes_failed(self, temp_db, memory_log):
        adapter = MagicMock()
        adapter.send.side_effect = RuntimeError("boom")
        rule = make_rule(channels=(("webhook", "https://hooks.example.com/x"),))
        results = NotificationDispatcher({ChannelType.WEBHOOK: adapter}, temp_db,
                                         memory_log).dispatch(_violation(rule), rule)
        assert results[0].status is DeliveryStatus.FAILED
        assert "RuntimeError" in results[0].error

    def test_missing_adapter_is_failed(self, temp_db, memory_log, rule):
        dispatcher = NotificationDispatcher({ChannelType.EMAIL: FakeChannel()}, temp_db, memory_log)
        results = dispatcher.dispatch(_violation(rule), rule)
        assert results[0].ok
        assert results[1].status is DeliveryStatus.FAILED
        assert "no adapter configured" in results[1].error


class TestRecords:
    def test_each_attempt_recorded_and_logged(self, temp_db, memory_log, rule):
        dispatcher = NotificationDispatcher(
            {ChannelType.EMAIL: FakeChannel(), ChannelType.WHATSAPP: FakeChannel()},
            temp_db, memory_log)
        results = dispatcher.dispatch(_violation(rule), rule)

        assert all(r.notification_id is not None for r in results)
        assert temp_db.count_rows("notifications") == 2
        assert len(memory_log.messages("info")) == 2
        record = temp_db.get_notification(results[0].notification_id)
        assert record.status is DeliveryStatus.SENT
        assert record.rule_id == rule.id
        assert record.entity_id == "web-01"

    def test_message_rendered_for_channel(self, temp_db, memory_log, rule):
        email, whatsapp = FakeChannel(), FakeChannel()
        NotificationDispatcher({ChannelType.EMAIL: email, ChannelType.WHATSAPP: whatsapp},
                               temp_db, memory_log).dispatch(_violation(rule), rule)
        destination, message = email.sent[0]
        assert destination == "ops@example.com"
        assert message.splitlines()[0] == "ALERT: High CPU usage - web-01"
        assert "95.0%" in whatsapp.sent[0][1]

    def test_test_mode_prefix(self, temp_db, memory_log):
        rule = make_rule(channels=(("console", ""),))
        console = FakeChannel()
        NotificationDispatcher({ChannelType.CONSOLE: console}, temp_db, memory_log).dispatch(
            _violation(rule), rule, test_mode=True)
        assert console.sent[0][1].startswith("TEST - ")

    def test_store_failure_still_returns_results(self, memory_log):
        store = MagicMock()
        store.create_notification.side_effect = RuntimeError("db gone")
        rule = make_rule(channels=(("console", ""),))
        results = NotificationDispatcher({ChannelType.CONSOLE: FakeChannel()}, store,
                                         memory_log).dispatch(_violation(rule), rule)
        assert results[0].ok
        assert results[0].notification_id is None
        store.update_notification_status.assert_not_called()


class TestTimeouts:
    def test_slow_channel_times_out(self, temp_db, memory_log):
        rule = make_rule(channels=(("console", ""), ("webhook", "https://hooks.example.com/a")))
        dispatcher = NotificationDispatcher(
            {ChannelType.CONSOLE: FakeChannel(), ChannelType.WEBHOOK: FakeChannel(delay=1.0)},
            temp_db, memory_log, channel_timeout=0.2)

        start = time.monotonic()
        results = dispatcher.dispatch(_violation(rule), rule)
        elapsed = time.monotonic() - start

        assert elapsed < 0.9
        assert results[0].ok
        assert results[1].status is DeliveryStatus.FAILED
        assert results[1].error == "timed out after 0.2s"

    def test_late_completion_does_not_change_record(self, temp_db, memory_log):
        rule = make_rule(channels=(("webhook", "https://hooks.example.com/a"),))
        webhook = FakeChannel(delay=0.4)
        dispatcher = NotificationDispatcher({ChannelType.WEBHOOK: webhook},
                                            temp_db, memory_log, channel_timeout=0.1)
        results = dispatcher.dispatch(_violation(rule), rule)
        assert webhook.finished.wait(2)

        record = temp_db.get_notification(results[0].notification_id)
        assert record.status is DeliveryStatus.FAILED
        assert "timed out" in record.error

    def test_concurrent_dispatches_each_get_full_timeout(self, temp_db, memory_log):
        console = FakeChannel(delay=0.4)
        dispatcher = NotificationDispatcher({ChannelType.CONSOLE: console}, temp_db, memory_log,
                                            channel_timeout=1.0)
        rules = [make_rule(f"r{i}") for i in range(8)]
        outcomes = {}

        def run(rule):
            outcomes[rule.id] = dispatcher.dispatch(_violation(rule), rule)

        threads = [threading.Thread(target=run, args=(r,)) for r in rules]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert len(outcomes) == 8
        assert all(results[0].ok for results in outcomes.values())
        assert len(console.sent) == 8
        assert all(n["status"] == "sent" for n in temp_db.get_recent_notifications())
