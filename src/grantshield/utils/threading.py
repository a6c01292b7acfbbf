"""Threading utilities for background tasks."""

import threading
from typing import Callable, Optional

from .logger import exception, info


class PeriodicTask:
    """Runs a callable on a daemon thread every `interval` seconds.

    Failures are logged and the loop keeps going; the next run happens
    on schedule. start() and stop() are idempotent.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], object],
        interval: float,
        run_immediately: bool = False,
    ):
        self._name = name
        self._func = func
        self._interval = interval
        self._run_immediately = run_immediately
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._loop, daemon=True, name=self._name
            )
            self._thread.start()
        info(f"[{self._name}] started (every {self._interval:.0f}s)")

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()

        # Wait for thread to finish outside the lock
        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)
            info(f"[{self._name}] stopped")

    def _loop(self) -> None:
        if not self._run_immediately and self._stop.wait(self._interval):
            return
        while not self._stop.is_set():
            try:
                self._func()
            except Exception:
                exception(f"[{self._name}] run failed")
            if self._stop.wait(self._interval):
                return


def start_background_task(func: Callable[[], None], name: Optional[str] = None) -> threading.Thread:
    """Start a function in a background daemon thread.

    Args:
        func: Function to run (no arguments)
        name: Optional thread name

    Returns:
        The started thread
    """
    thread = threading.Thread(target=func, daemon=True, name=name)
    thread.start()
    return thread
