import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from eviction.timestamp_heap import EmptyQueueError, HeapItem, TimestampHeap, as_timestamp


logger = logging.getLogger(__name__)


@dataclass
class BufferState:
    buffer_id: str
    first_event_ms: int
    last_event_ms: int
    event_count: int = 1


class BufferRegistry:
    """Tracks event buffers by last activity so idle ones can be expired.

    Holds one TimestampHeap plus the handle returned for each buffer. All
    access goes through a single asyncio.Lock since the heap itself is not
    synchronized.
    """

    def __init__(self):
        self._heap = TimestampHeap()
        self._handles: Dict[str, HeapItem] = {}
        self._states: Dict[str, BufferState] = {}
        self._lock = asyncio.Lock()

    async def record_event(self, buffer_id: str, timestamp_ms: int) -> BufferState:
        timestamp_ms = as_timestamp(timestamp_ms)
        async with self._lock:
            state = self._states.get(buffer_id)
            if state is None:
                # Heap first, so a rejected push leaves no half-tracked buffer
                handle = self._heap.push(buffer_id, timestamp_ms)
                state = BufferState(
                    buffer_id=buffer_id,
                    first_event_ms=timestamp_ms,
                    last_event_ms=timestamp_ms
                )
                self._handles[buffer_id] = handle
                self._states[buffer_id] = state
                return state

            # Late events never move a buffer back in time
            if timestamp_ms > state.last_event_ms:
                self._heap.update(self._handles[buffer_id], timestamp_ms)
                state.last_event_ms = timestamp_ms
            state.event_count += 1
            return state

    async def get(self, buffer_id: str) -> Optional[BufferState]:
        async with self._lock:
            return self._states.get(buffer_id)

    async def oldest(self) -> Optional[BufferState]:
        async with self._lock:
            try:
                top = self._heap.peek()
            except EmptyQueueError:
                return None
            return self._states[top.value]

    async def oldest_timestamp(self) -> Optional[int]:
        async with self._lock:
            try:
                return self._heap.peek_priority()
            except EmptyQueueError:
                return None

    async def expire(self, cutoff_ms: int) -> List[BufferState]:
        """Evict every buffer whose last activity is at or before cutoff_ms."""
        async with self._lock:
            evicted = []
            for buffer_id, last_event_ms in self._heap.pop_expired(cutoff_ms):
                del self._handles[buffer_id]
                state = self._states.pop(buffer_id)
                logger.debug("evicted buffer %s (last event %d)", buffer_id, last_event_ms)
                evicted.append(state)
            return evicted

    async def expire_inactive(self, inactivity_ms: int, now_ms: int) -> List[BufferState]:
        return await self.expire(now_ms - inactivity_ms)

    async def clear(self):
        async with self._lock:
            self._heap = TimestampHeap()
            self._handles.clear()
            self._states.clear()

    def size(self):
        return len(self._heap)

    def is_empty(self):
        return self._heap.is_empty()
