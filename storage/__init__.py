from .buffer_registry import BufferRegistry, BufferState

__all__ = ['BufferRegistry', 'BufferState']
