"""
Periodic cleanup of expired broker state, owned by the application lifespan (start/stop).
Tests call run_once() instead of waiting on the thread.
"""
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class Sweeper:
    def __init__(self, task: Callable[[], int], interval_seconds: float, *, name: str = "oauth-broker-sweeper"):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._task = task
        self._interval = interval_seconds
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        return self._task()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("Started %s (every %ss)", self._name, self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Stopped %s", self._name)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Sweep failed")
