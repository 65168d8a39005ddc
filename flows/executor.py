"""Background execution context shared by flows and the session validator"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Union

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for delayed work; cancel() stops the timer and forgets it"""

    def __init__(self, executor: "FlowExecutor", timer: threading.Timer):
        self._executor = executor
        self.timer = timer

    def cancel(self) -> bool:
        self.timer.cancel()
        self._executor._forget(self.timer)
        return True


class FlowExecutor:
    """One worker thread runs every flow step, network call and validity check.

    Delayed work (device code polling) waits on a Timer thread and is then
    queued onto the worker, so waiting never blocks other tasks.
    """

    def __init__(self, name: str = "ReAuth"):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._timers = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable, *args) -> Future:
        return self._executor.submit(self._run, fn, *args)

    @staticmethod
    def _run(fn: Callable, *args):
        try:
            return fn(*args)
        except Exception:
            logger.error(f"Unhandled exception in background task {fn!r}", exc_info=True)
            raise

    def schedule(self, delay: float, fn: Callable, *args) -> Union[ScheduledTask, Future]:
        """Run fn on the worker after `delay` seconds. The handle supports cancel()."""
        if delay <= 0:
            return self.submit(fn, *args)

        def fire():
            self._forget(timer)
            self.submit(fn, *args)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()
        return ScheduledTask(self, timer)

    def _forget(self, timer: threading.Timer) -> None:
        with self._lock:
            self._timers.discard(timer)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        self._executor.shutdown(wait=wait)


_default_executor = None
_default_lock = threading.Lock()


def get_default_executor() -> FlowExecutor:
    """Process-wide executor, created on first use"""
    global _default_executor
    with _default_lock:
        if _default_executor is None:
            _default_executor = FlowExecutor()
        return _default_executor
