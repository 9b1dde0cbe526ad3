from .timestamp_heap import (
    REMOVED_INDEX,
    EmptyQueueError,
    HeapItem,
    INT64_MAX,
    INT64_MIN,
    InvalidHandleError,
    TimestampHeap,
    TimestampHeapError,
    as_timestamp,
)

__all__ = [
    'REMOVED_INDEX',
    'EmptyQueueError',
    'HeapItem',
    'INT64_MAX',
    'INT64_MIN',
    'InvalidHandleError',
    'TimestampHeap',
    'TimestampHeapError',
    'as_timestamp',
]
