"""Recurring timer used for automatic sync."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """Calls ``callback`` every ``interval_ms`` on a daemon thread.

    The first call happens one interval after :meth:`start`. Errors raised
    by the callback are logged and the timer keeps running.
    """

    def __init__(self, interval_ms: int, callback: Callable[[], object],
                 name: str = 'yousei-timer'):
        self.interval_ms = interval_ms
        self.callback = callback
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"Timer {self.name} started ({self.interval_ms}ms)")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_ms / 1000):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Error in timer {self.name}: {e}", exc_info=True)

    def cancel(self, timeout: Optional[float] = 5) -> None:
        """Stop the timer, waiting up to ``timeout`` seconds for a running callback."""
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.debug(f"Timer {self.name} cancelled")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
