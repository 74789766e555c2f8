"""Wall-clock driver for the expiry sweeper and the reminder passes."""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone

from .reminders import ReminderScanner
from .sweeper import ExpirySweeper


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SweepScheduler:
    """Runs the sweeper and reminder ticks on a background thread until stopped."""

    def __init__(
        self,
        sweeper: ExpirySweeper,
        reminders: ReminderScanner | None = None,
        poll_interval_s: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ) -> None:
        self.sweeper = sweeper
        self.reminders = reminders
        self.poll_interval_s = poll_interval_s
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling in a daemon thread."""
        if self.is_running:
            self.logger.warning("Sweep scheduler is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="expiry-sweeper", daemon=True)
        self._thread.start()
        self.logger.info(
            f"Sweep scheduler started (every {self.sweeper.interval}, ttl {self.sweeper.ttl})"
        )

    def stop(self) -> None:
        """Stop polling and wait for the thread to exit."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self._thread = None
        self.logger.info("Sweep scheduler stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            now = self.clock()
            try:
                self.sweeper.tick(now)
            except Exception as e:
                self.logger.error(f"Expiry sweep failed: {e}", exc_info=True)
            if self.reminders is not None:
                try:
                    self.reminders.tick(now)
                except Exception as e:
                    self.logger.error(f"Reminder pass failed: {e}", exc_info=True)
            self._stop_event.wait(self.poll_interval_s)
