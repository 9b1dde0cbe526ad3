import operator
from typing import Any, List, Tuple
from dataclasses import dataclass


REMOVED_INDEX = -1
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class TimestampHeapError(Exception):
    pass


class EmptyQueueError(TimestampHeapError):
    """Raised by peek/pop when no items are tracked."""


class InvalidHandleError(TimestampHeapError):
    """Raised by update when the handle is not tracked by this heap."""


@dataclass(eq=False)
class HeapItem:
    value: Any
    priority: int
    index: int = REMOVED_INDEX

    @property
    def tracked(self):
        return self.index != REMOVED_INDEX


def as_timestamp(priority) -> int:
    """Coerce an int-like timestamp to int, rejecting bools, floats and values outside int64."""
    if isinstance(priority, bool):
        raise TypeError("priority must be an int timestamp, got bool")
    try:
        value = operator.index(priority)
    except TypeError:
        raise TypeError(f"priority must be an int timestamp, got {type(priority).__name__}") from None
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"priority {value} is outside the int64 range")
    return value


class TimestampHeap:
    """Min-heap of items keyed by last-activity timestamp (ms since epoch).

    The root is always the oldest item. Every item carries its own slot in
    the backing list so that update() can re-heapify from that slot instead
    of scanning. Not thread-safe: callers serialize access.
    """

    def __init__(self):
        self.heap: List[HeapItem] = []

    def _parent(self, i: int):
        return (i - 1) // 2

    def _left(self, i: int):
        return 2 * i + 1

    def _right(self, i: int):
        return 2 * i + 2

    def _swap(self, i: int, j: int):
        self.heap[i], self.heap[j] = self.heap[j], self.heap[i]
        self.heap[i].index = i
        self.heap[j].index = j

    def _bubble_up(self, i: int) -> bool:
        moved = False
        while i > 0:
            parent = self._parent(i)
            if self.heap[i].priority < self.heap[parent].priority:
                self._swap(i, parent)
                i = parent
                moved = True
            else:
                break
        return moved

    def _bubble_down(self, i: int):
        size = len(self.heap)
        while True:
            smallest = i
            left = self._left(i)
            right = self._right(i)

            if left < size and self.heap[left].priority < self.heap[smallest].priority:
                smallest = left
            if right < size and self.heap[right].priority < self.heap[smallest].priority:
                smallest = right

            if smallest != i:
                self._swap(i, smallest)
                i = smallest
            else:
                break

    def push(self, value: Any, priority: int) -> HeapItem:
        """Track a new item and return its handle for later update() calls."""
        priority = as_timestamp(priority)
        item = HeapItem(value=value, priority=priority, index=len(self.heap))
        self.heap.append(item)
        self._bubble_up(item.index)
        return item

    def pop(self) -> Tuple[Any, int]:
        """Remove the oldest item and return its (value, priority)."""
        if not self.heap:
            raise EmptyQueueError("TimestampHeap is empty, nothing to pop")

        top = self.heap[0]
        last = self.heap.pop()
        if last is not top:
            self.heap[0] = last
            last.index = 0
            self._bubble_down(0)

        top.index = REMOVED_INDEX
        return top.value, top.priority

    def peek(self) -> HeapItem:
        if not self.heap:
            raise EmptyQueueError("TimestampHeap is empty, no top item")
        return self.heap[0]

    def peek_priority(self) -> int:
        """Return the oldest timestamp without removing it."""
        return self.peek().priority

    def update(self, item: HeapItem, priority: int):
        """Change the priority of a tracked item and restore heap order.

        Cheaper than removing and pushing again because sifting starts from
        the item's current slot rather than the root.
        """
        priority = as_timestamp(priority)
        i = item.index
        if i < 0 or i >= len(self.heap) or self.heap[i] is not item:
            raise InvalidHandleError(f"item {item.value!r} is not tracked by this heap")

        item.priority = priority
        if not self._bubble_up(i):
            self._bubble_down(i)

    def pop_expired(self, cutoff: int) -> List[Tuple[Any, int]]:
        """Pop every item whose timestamp is at or before cutoff, oldest first."""
        expired = []
        while self.heap and self.heap[0].priority <= cutoff:
            expired.append(self.pop())
        return expired

    def size(self):
        return len(self.heap)

    def is_empty(self):
        return len(self.heap) == 0

    def __len__(self):
        return len(self.heap)
