from typing import Callable, Optional
import threading

ActivityListener = Callable[[bool], None]


class ActivityEventSource:
    """
    Reports when the exam window is hidden or shown again.

    A platform integration calls ``notify(hidden)`` from its own visibility
    hook; tests call it directly. Notifications outside start()/stop() are
    dropped.
    """

    def __init__(self):
        self._listener: Optional[ActivityListener] = None
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._listener is not None

    def start(self, listener: ActivityListener) -> None:
        with self._lock:
            self._listener = listener

    def stop(self) -> None:
        with self._lock:
            self._listener = None

    def notify(self, hidden: bool) -> None:
        with self._lock:
            listener = self._listener
        if listener is not None:
            listener(bool(hidden))
