# core/guards.py
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Set


class PendingOperations:
    """
    Table of in-flight operation keys such as "add_<id>" or "remove_<id>".

    A key is inserted when an operation starts and removed when it ends.
    A second claim on a held key fails; callers reject rather than queue.
    """

    def __init__(self):
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    @staticmethod
    def key(operation: str, product_id: str) -> str:
        return f"{operation}_{product_id}"

    def claim(self, operation: str, product_id: str) -> Optional[str]:
        k = self.key(operation, product_id)
        with self._lock:
            if k in self._keys:
                return None
            self._keys.add(k)
        return k

    def release(self, key: Optional[str]):
        if key is None:
            return
        with self._lock:
            self._keys.discard(key)

    @contextmanager
    def hold(self, operation: str, product_id: str) -> Iterator[bool]:
        k = self.claim(operation, product_id)
        try:
            yield k is not None
        finally:
            self.release(k)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
