"""Background scheduler for periodic alert ticks."""
import logging
import threading
import schedule
import time

logger = logging.getLogger("alertmonitor.scheduler")


class OrchestratorScheduler:
    def __init__(self, orchestrator, interval_seconds=60):
        self.orchestrator = orchestrator
        self.interval = interval_seconds
        self._scheduler = schedule.Scheduler()
        self._thread = None
        self._running = False
        self._callbacks = []
        self._consecutive_failures = 0
        self._tick_lock = threading.Lock()

    def on_tick(self, callback):
        """Register callback called with the TickSummary after each tick."""
        self._callbacks.append(callback)

    def start(self):
        """Start ticking in a background thread."""
        if self._running:
            return
        self._running = True

        self._scheduler.every(self.interval).seconds.do(self._tick_job)

        self._thread = threading.Thread(target=self._run_loop, daemon=True,
                                        name="alert-scheduler")
        self._thread.start()
        logger.info(f"Scheduler started (every {self.interval}s)")

    def stop(self):
        """Stop ticking. An in-flight tick finishes on its own."""
        self._running = False
        self._scheduler.clear()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Scheduler stopped")

    def run_forever(self):
        """Start and block until interrupted."""
        self.start()
        try:
            while self._running:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.stop()

    def _run_loop(self):
        # Do an initial tick immediately
        self._tick_job()
        while self._running:
            self._scheduler.run_pending()
            time.sleep(1)

    def _tick_job(self):
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous tick still running, skipping this interval")
            return
        try:
            summary = self.orchestrator.run_tick()
        except Exception as e:
            # run_tick should never raise; treat it like an aborted tick.
            logger.error(f"Tick crashed: {e}")
            summary = None
        finally:
            self._tick_lock.release()

        if summary is None or summary.aborted:
            self._consecutive_failures += 1
            logger.error(f"Tick aborted ({self._consecutive_failures} consecutive)")
            if self._consecutive_failures >= 5:
                logger.critical("5+ consecutive aborted ticks!")
            return

        self._consecutive_failures = 0
        for cb in self._callbacks:
            try:
                cb(summary)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    @property
    def consecutive_failures(self):
        return self._consecutive_failures
