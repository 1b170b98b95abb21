from collections import deque
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class OneShotSignal(Generic[T]):
    """An event that must be acted on once and then acknowledged.

    ``value`` keeps returning the pending payload (so an observer that
    attaches late still sees it) until ``handled()`` is called.  ``drain()``
    is the queue-style consumer: it hands out each emitted payload at most
    once and leaves ``value`` alone.  ``handled()`` discards anything still
    queued, so an acknowledged event is never delivered afterwards.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._pending: T | None = None
        self._queue: deque[T] = deque()

    def emit(self, value: T) -> None:
        self._pending = value
        self._queue.append(value)

    @property
    def value(self) -> T | None:
        return self._pending

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    def handled(self) -> None:
        self._pending = None
        self._queue.clear()

    def drain(self) -> list[T]:
        items = list(self._queue)
        self._queue.clear()
        return items

    def __repr__(self) -> str:
        return f"OneShotSignal({self.name!r}, pending={self._pending!r})"


def signal_payload(value: Any) -> Any:
    """JSON-friendly view of a signal payload."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return str(value)
