"""
Optional in-process reminder timer.

Production deployments call the reminders endpoint from an external cron
with the shared secret; this timer is a convenience for single-process
setups. A non-blocking lock makes overlapping ticks skip instead of queueing.
"""

import logging
import threading

logger = logging.getLogger('studyflow.reminders')

DEFAULT_INTERVAL_SECONDS = 60


class ReminderScheduler:
    def __init__(self, dispatcher, interval=DEFAULT_INTERVAL_SECONDS):
        self.dispatcher = dispatcher
        self.interval = interval
        self._running = threading.Lock()
        self._stopped = threading.Event()
        self._thread = None

    @property
    def is_running(self):
        return self._running.locked()

    @property
    def is_started(self):
        return self._thread is not None and self._thread.is_alive()

    def run_once(self):
        """One global scan. Returns None when a previous tick is still running."""
        if not self._running.acquire(blocking=False):
            logger.info("Reminder check already running; skipping this tick")
            return None
        try:
            return self.dispatcher.scan()
        except Exception as e:
            # Next tick retries.
            logger.error(f"❌ Scheduler error: {e}", exc_info=True)
            return None
        finally:
            self._running.release()

    def _loop(self):
        while not self._stopped.wait(self.interval):
            self.run_once()

    def start(self):
        if self.is_started:
            return self
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name='reminder-scheduler', daemon=True)
        self._thread.start()
        logger.info(f"🕒 Reminder scheduler started (every {self.interval}s)")
        return self

    def stop(self, timeout=None):
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Reminder scheduler stopped")
