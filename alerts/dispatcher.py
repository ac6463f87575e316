"""Fan a violation out to every channel of its rule.

Each dispatch runs its channel sends on its own short-lived thread pool, one
thread per channel, so the timeout covers only the send itself. One channel's
error or timeout never affects the others, and every attempt leaves a
notification record plus a system log entry behind.
"""
import time
import logging
from concurrent.futures import ThreadPoolExecutor, wait

from alerts.errors import ChannelSendError, ChannelTimeoutError
from alerts.templates import render_message
from models.alerts import ChannelResult, NotificationRecord
from models.enums import DeliveryStatus

logger = logging.getLogger("alertmonitor.alerts.dispatcher")

COMPONENT = "dispatcher"


class NotificationDispatcher:
    def __init__(self, adapters, store, system_log, channel_timeout=10.0):
        self.adapters = adapters
        self.store = store
        self.system_log = system_log
        self.channel_timeout = channel_timeout

    def dispatch(self, violation, rule, entity=None, test_mode=False):
        """Send `violation` on every channel of `rule`.

        Returns one ChannelResult per channel, in the rule's channel order.
        Never raises for delivery problems.
        """
        entity = entity or rule.target
        results = [None] * len(rule.channels)
        sends = []

        for i, target in enumerate(rule.channels):
            message = render_message(target, rule, violation, entity, test_mode=test_mode)
            notification_id = self._record_queued(rule, entity, target, message)
            adapter = self.adapters.get(target.channel)
            if adapter is None:
                results[i] = self._finish(
                    rule, entity, target, notification_id, DeliveryStatus.FAILED,
                    f"no adapter configured for channel {target.channel.value}", 0,
                )
                continue
            sends.append((i, target, notification_id, adapter, message))

        if not sends:
            return results

        # One thread per send: nothing waits in a queue, so the timeout is the send's own.
        pool = ThreadPoolExecutor(max_workers=len(sends), thread_name_prefix="alert-channel")
        pending = {}
        for i, target, notification_id, adapter, message in sends:
            future = pool.submit(self._timed_send, adapter, target.destination, message)
            pending[future] = (i, target, notification_id, time.monotonic())
        done, not_done = wait(pending, timeout=self.channel_timeout)
        pool.shutdown(wait=False)

        for future in done:
            i, target, notification_id, _ = pending[future]
            error, elapsed_ms = self._outcome(future)
            status = DeliveryStatus.FAILED if error else DeliveryStatus.SENT
            results[i] = self._finish(rule, entity, target, notification_id,
                                      status, error, elapsed_ms)
        for future in not_done:
            i, target, notification_id, started = pending[future]
            future.add_done_callback(self._late_completion(rule, target))
            timeout = ChannelTimeoutError(f"timed out after {self.channel_timeout:g}s",
                                          channel=target.channel.value)
            results[i] = self._finish(
                rule, entity, target, notification_id, DeliveryStatus.FAILED, str(timeout),
                int((time.monotonic() - started) * 1000),
            )

        return results

    @staticmethod
    def _timed_send(adapter, destination, message):
        start = time.monotonic()
        adapter.send(destination, message)
        return int((time.monotonic() - start) * 1000)

    @staticmethod
    def _outcome(future):
        try:
            return None, future.result()
        except ChannelSendError as e:
            return str(e), 0
        except Exception as e:
            return f"{type(e).__name__}: {e}", 0

    def _late_completion(self, rule, target):
        def _callback(future):
            if future.cancelled():
                return
            error = future.exception()
            logger.warning(
                f"Late completion on {target.channel.value} for rule {rule.id} "
                f"after timeout: {'failed: ' + str(error) if error else 'delivered'}"
            )
        return _callback

    def _record_queued(self, rule, entity, target, message):
        record = NotificationRecord(
            rule_id=rule.id, entity_id=entity.id, channel=target.channel.value,
            destination=target.destination, message=message,
        )
        try:
            return self.store.create_notification(record)
        except Exception as e:
            logger.error(f"Could not record notification for rule {rule.id}: {e}")
            return None

    def _finish(self, rule, entity, target, notification_id, status, error, duration_ms):
        if notification_id is not None:
            try:
                self.store.update_notification_status(notification_id, status, error)
            except Exception as e:
                logger.error(f"Could not update notification {notification_id}: {e}")

        metadata = {
            "rule_id": rule.id,
            "entity_id": entity.id,
            "channel": target.channel.value,
            "notification_id": notification_id,
        }
        if status is DeliveryStatus.SENT:
            self.system_log.info(COMPONENT, f"Notification sent via {target.channel.value}",
                                 **metadata)
        else:
            self.system_log.error(COMPONENT, f"Notification failed via {target.channel.value}",
                                  error=error, **metadata)

        return ChannelResult(
            channel=target.channel,
            destination=target.destination,
            status=status,
            error=error,
            notification_id=notification_id,
            duration_ms=duration_ms,
        )
