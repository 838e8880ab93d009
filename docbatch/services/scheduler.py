"""Periodic background loops for the submitter and the poller."""

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PeriodicWorker:
    """Runs *tick* every *interval_seconds* on its own daemon thread.

    The cycle is sleep-then-tick. ``stop()`` interrupts the sleep; a tick that
    is already running finishes first. A tick that raises is logged and the
    loop carries on with the next one.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        tick: Callable[[], object],
        stop_event: threading.Event | None = None,
    ) -> None:
        self.name = name
        self._interval = interval_seconds
        self._tick = tick
        self._stop_event = stop_event or threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the loop. No-op if already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
            self._thread.start()
        logger.info("%s started (every %.0fs)", self.name, self._interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def run_once(self) -> bool:
        """Run a single tick in the calling thread. Returns False if it raised."""
        try:
            self._tick()
        except Exception:
            logger.exception("%s: tick failed", self.name)
            return False
        return True

    def _loop(self) -> None:
        try:
            while not self._stop_event.wait(self._interval):
                self.run_once()
        finally:
            logger.info("%s stopped", self.name)
