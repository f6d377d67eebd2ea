from collections import deque
from typing import Deque, Generic, Iterable, List, TypeVar

T = TypeVar("T")


class BoundedBuffer(Generic[T]):
    """FIFO buffer with a hard capacity.

    ``append`` evicts from the front, so under overload the newest items win.
    ``prepend`` puts a failed batch back at the front; whatever then exceeds
    capacity is cut from the back. Both return how many items were dropped.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: Deque[T] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._items)

    def append(self, item: T) -> int:
        dropped = 1 if len(self._items) == self.capacity else 0
        self._items.append(item)
        return dropped

    def take(self, count: int) -> List[T]:
        taken: List[T] = []
        while self._items and len(taken) < count:
            taken.append(self._items.popleft())
        return taken

    def prepend(self, items: Iterable[T]) -> int:
        items = list(items)
        overflow = max(0, len(self._items) + len(items) - self.capacity)
        self._items.extendleft(reversed(items))
        return overflow

    def snapshot(self) -> List[T]:
        return list(self._items)
