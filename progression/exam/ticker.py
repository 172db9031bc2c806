from typing import Callable, Optional
import logging
import threading

logger = logging.getLogger(__name__)


class Ticker:
    """Calls back once per interval while started."""

    def start(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class ManualTicker(Ticker):
    """Ticks only when told to; used to drive a session deterministically."""

    def __init__(self):
        self._callback: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._callback is not None

    def start(self, callback: Callable[[], None]) -> None:
        self._callback = callback

    def stop(self) -> None:
        self._callback = None

    def tick(self, times: int = 1) -> None:
        for _ in range(times):
            callback = self._callback
            if callback is None:
                return
            callback()


class IntervalTicker(Ticker):
    """Background thread ticking every ``interval`` seconds until stopped."""

    def __init__(self, interval: float = 1.0):
        self._interval = max(0.01, float(interval))
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._callback: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self, callback: Callable[[], None]) -> None:
        if self._thread is not None:
            return
        self._callback = callback
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="exam-ticker", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        # stop() may be reached from the tick itself when the countdown expires
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._callback()
            except Exception:
                logger.exception("Exam ticker callback failed")
