"""Fixed-cadence polling used by every timer mode."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 100.0

TickerFactory = Callable[[Callable[[], None]], "Ticker"]


class Ticker:
    """Call ``callback`` every ``interval_ms`` on a daemon thread until cancelled.

    Each ``start()`` spawns a loop bound to its own stop event, so cancelling
    from inside the callback (or re-arming right after) never leaves two loops
    sharing one event.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
        name: str = "timer-tick",
    ) -> None:
        self.callback = callback
        self.interval_ms = interval_ms
        self.name = name
        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            stop_event = threading.Event()
            thread = threading.Thread(target=self._run_loop, args=(stop_event,), name=self.name, daemon=True)
            self._stop_event = stop_event
            self._thread = thread
        thread.start()
        LOGGER.debug("Started ticker %s every %sms", self.name, self.interval_ms)

    def cancel(self) -> None:
        """Stop future ticks without waiting for an in-flight one."""
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
            self._stop_event = None
            self._thread = None

    def stop(self, timeout: float = 1.0) -> None:
        thread = self._thread
        self.cancel()
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        LOGGER.debug("Stopped ticker %s", self.name)

    def _run_loop(self, stop_event: threading.Event) -> None:
        interval = max(self.interval_ms, 1.0) / 1000.0
        while not stop_event.wait(interval):
            try:
                self.callback()
            except Exception:  # pragma: no cover
                LOGGER.exception("Timer tick failed for %s", self.name)
