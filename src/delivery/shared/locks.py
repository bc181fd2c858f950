"""Per-key mutual exclusion for single-writer sections.

Each key (an order, a stock row, a refund) gets its own re-entrant lock, so
work on different keys proceeds in parallel while work on the same key is
serialized. A clustered deployment replaces this with row locks or advisory
locks in the database; the call sites stay the same.
"""

import threading
from contextlib import ExitStack, contextmanager


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str):
        lock = self._lock_for(key)
        with lock:
            yield

    @contextmanager
    def hold_all(self, keys):
        """Acquire several keys in sorted order to rule out lock-order deadlocks."""
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.hold(key))
            yield

    def clear(self) -> None:
        with self._guard:
            self._locks.clear()


locks = KeyedLocks()


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


def dispatch_key(order_id: str) -> str:
    return f"dispatch:{order_id}"


def stock_key(restaurant_id: str, item_id: str) -> str:
    return f"stock:{restaurant_id}:{item_id}"


def refund_key(refund_id: str) -> str:
    return f"refund:{refund_id}"


def sequence_key(name: str) -> str:
    return f"sequence:{name}"


def rider_key(rider_id: str) -> str:
    return f"rider:{rider_id}"
