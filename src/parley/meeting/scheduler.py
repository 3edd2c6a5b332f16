"""
Periodic flush timer for live meetings.
"""

import logging
import threading
from typing import Callable, Optional

from ..logger import log_exception

logger = logging.getLogger(__name__)


class FlushScheduler:
    """
    Calls on_tick every `interval` seconds on a background thread until stopped.

    A tick that raises is logged and the timer keeps going. stop() cancels
    future ticks only; it does not interrupt a tick already running.
    """

    def __init__(self, interval: float, on_tick: Callable[[], None], name: str = "flush-scheduler"):
        self.interval = interval
        self.on_tick = on_tick
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop_event,), name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"{self.name}: started (every {self.interval:.1f}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel the timer. Waits up to `timeout` for a running tick to return."""
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.debug(f"{self.name}: stopped")

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            try:
                self.on_tick()
            except Exception as e:
                log_exception(e, f"in {self.name} tick")
