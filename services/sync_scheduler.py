# services/sync_scheduler.py
import logging
import threading
from typing import Optional

from utils.exceptions import BizError, SyncInProgressError

logger = logging.getLogger(__name__)

# 2 ** 16 intervals is far beyond any sane max_backoff
_MAX_EXPONENT = 16


class SyncScheduler:
    """
    Background timer running SyncService cycles inside the app context.

    start() / stop() are idempotent. Consecutive failures grow the delay
    exponentially up to ``max_backoff``; one success resets it. Failures are
    only logged here, the last report keeps the error for /api/sync/status.
    """

    def __init__(self, app, service, interval: float = 30, max_backoff: float = 300):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.app = app
        self.service = service
        self.interval = float(interval)
        self.max_backoff = max(float(max_backoff), self.interval)
        self.failures = 0
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._guard = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_delay(self) -> float:
        if not self.failures:
            return self.interval
        return min(self.interval * 2 ** min(self.failures, _MAX_EXPONENT), self.max_backoff)

    def start(self) -> bool:
        with self._guard:
            if self.running:
                return False
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._stop_event,), name="sync-scheduler", daemon=True
            )
            self._thread.start()
        logger.info("sync scheduler started, every %.0fs", self.interval)
        return True

    def stop(self, timeout: float = 5) -> bool:
        with self._guard:
            thread = self._thread
            if thread is None:
                return False
            self._stop_event.set()
            self._thread = None
        if thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("sync scheduler stopped")
        return True

    def tick(self):
        """Run one cycle now; returns the cycle's report, None when one was already running."""
        with self.app.app_context():
            try:
                report = self.service.synchronize()
            except SyncInProgressError:
                logger.debug("periodic sync skipped, a cycle is already running")
                return None
            except BizError as e:
                self.failures += 1
                logger.warning("periodic sync failed (%d in a row, retry in %.0fs): %s",
                               self.failures, self.next_delay(), e)
                return self.service.last_report
            except Exception:
                self.failures += 1
                logger.exception("periodic sync crashed (%d in a row, retry in %.0fs)",
                                 self.failures, self.next_delay())
                return self.service.last_report
        self.failures = 0
        return report

    def _run(self, stop_event: threading.Event):
        while not stop_event.wait(self.next_delay()):
            self.tick()
