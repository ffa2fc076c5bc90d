import logging
import threading
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


def spawn_thread(target: Callable, *args) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


class PeriodicJob:
    """Run ``fn`` every ``interval`` seconds on a background task.

    ``spawn`` has the shape of ``socketio.start_background_task``. Stopping
    wakes the sleeper immediately; a run already in progress completes.
    """

    def __init__(self, name: str, interval: float, fn: Callable[[], Any]):
        self.name = name
        self.interval = float(interval)
        self.fn = fn
        self._stop = threading.Event()
        self._task: Optional[Any] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._stop.is_set()

    def start(self, spawn: Callable = spawn_thread) -> None:
        if self._task is not None:
            return
        self._stop.clear()
        self._task = spawn(self._loop)
        logger.info(f"[job-start] name={self.name} interval={self.interval}s")

    def stop(self) -> None:
        if self._task is None or self._stop.is_set():
            return
        self._stop.set()
        logger.info(f"[job-stop] name={self.name}")

    def run_once(self) -> None:
        try:
            self.fn()
        except Exception:
            logger.exception(f"[job-error] name={self.name}")

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()
