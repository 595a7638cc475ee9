"""
Ordered, thread-safe pending queue with an atomic take-all-and-clear claim.
"""

from __future__ import annotations

import threading
import typing as t

import structlog

log = structlog.get_logger(__name__)

T = t.TypeVar("T")
QueueObserver = t.Callable[[int], None]


class TaskQueue(t.Generic[T]):
    """
    Pending items of one bucket, in insertion order.

    Observers are notified synchronously after every mutation with the queue
    size observed right after that mutation. They run outside the queue lock,
    so an observer may itself drain the queue. A failing observer is logged and
    skipped; it never aborts the mutation that notified it.

    Parameters
    ----------
    name : str, optional
        Name used in logs, usually the owning bucket id.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._items: list[T] = []
        self._lock = threading.Lock()
        self._observers: dict[t.Hashable, QueueObserver] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def snapshot(self) -> list[T]:
        """
        Return a copy of the queued items without claiming them.

        Returns
        -------
        list[T]
            Queued items in insertion order.
        """
        with self._lock:
            return list(self._items)

    def append(self, item: T) -> int:
        """
        Append an item and notify observers.

        Parameters
        ----------
        item : T
            Item to queue.

        Returns
        -------
        int
            Queue size right after the append.
        """
        with self._lock:
            self._items.append(item)
            size = len(self._items)
        self._notify(size=size)
        return size

    def drain(self) -> list[T]:
        """
        Atomically take every queued item and leave the queue empty.

        Items appended concurrently land either in the returned list or in the
        queue for a later claim, never in both.

        Returns
        -------
        list[T]
            Claimed items in insertion order, possibly empty.
        """
        with self._lock:
            items, self._items = self._items, []
        if items:
            log.debug(event="Drained queue", queue=self._name, drained_count=len(items))
            self._notify(size=0)
        return items

    def add_observer(self, key: t.Hashable, observer: QueueObserver) -> None:
        """
        Attach a mutation observer under ``key``, replacing any previous one.

        Parameters
        ----------
        key : typing.Hashable
            Observer identity used for removal.
        observer : QueueObserver
            Callable receiving the new queue size.
        """
        with self._lock:
            self._observers[key] = observer

    def remove_observer(self, key: t.Hashable) -> None:
        """Detach the observer registered under ``key``; unknown keys are ignored."""
        with self._lock:
            self._observers.pop(key, None)

    def _notify(self, *, size: int) -> None:
        with self._lock:
            observers = list(self._observers.items())
        for key, observer in observers:
            try:
                observer(size)
            except Exception as error:
                log.warning(
                    event="Queue observer failed",
                    queue=self._name,
                    observer=repr(key),
                    size=size,
                    error=str(object=error),
                )
