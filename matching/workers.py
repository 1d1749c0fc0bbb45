from __future__ import annotations

import threading
from typing import Callable, Dict, Generic, TypeVar

T = TypeVar("T")


class WorkerArena(Generic[T]):
    """Lazily built resources, one per worker thread.

    A worker gets the same instance every time it asks and never sees the
    instance of another worker. Only the first access of each worker takes
    the lock.
    """

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._items: Dict[int, T] = {}

    def get(self) -> T:
        key = threading.get_ident()
        item = self._items.get(key)
        if item is not None:
            return item
        with self._lock:
            item = self._items.get(key)
            if item is None:
                item = self._factory()
                self._items[key] = item
        return item

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
