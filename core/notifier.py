# core/notifier.py
import os
import threading
import time
from typing import Callable, List, Optional

from .logger import get_logger

logger = get_logger(__name__)

TOAST_DEDUP_SECONDS = float(os.getenv("TOAST_DEDUP_SECONDS", "1.0"))

Sink = Callable[[str, str], None]


def log_sink(kind: str, message: str):
    if kind == "error":
        logger.warning("[notify:%s] %s", kind, message)
    else:
        logger.info("[notify:%s] %s", kind, message)


class Notifier:
    """
    Transient user notifications. An identical message delivered again within
    the dedup window is dropped.
    """

    def __init__(
        self,
        sink: Optional[Sink] = None,
        dedup_seconds: float = TOAST_DEDUP_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sink = sink or log_sink
        self.dedup_seconds = dedup_seconds
        self.clock = clock
        self._last_message: Optional[str] = None
        self._last_ts = 0.0
        self._timers: List[threading.Timer] = []
        self._lock = threading.Lock()

    def notify(self, message: str, kind: str = "success") -> bool:
        with self._lock:
            now = self.clock()
            if (
                message == self._last_message
                and now - self._last_ts < self.dedup_seconds
            ):
                logger.debug("Suppressed duplicate notification: %s", message)
                return False
            self._last_message = message
            self._last_ts = now

        try:
            self.sink(kind, message)
        except Exception as e:
            logger.exception("Notification sink failed for '%s': %s", message, e)
        return True

    def success(self, message: str) -> bool:
        return self.notify(message, "success")

    def error(self, message: str) -> bool:
        return self.notify(message, "error")

    def info(self, message: str) -> bool:
        return self.notify(message, "info")

    def schedule(self, message: str, delay: float, kind: str = "info") -> threading.Timer:
        timer = threading.Timer(delay, self.notify, args=(message, kind))
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()
        return timer

    def cancel_all(self):
        with self._lock:
            timers, self._timers = self._timers, []
        for t in timers:
            t.cancel()
