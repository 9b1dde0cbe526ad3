import pytest
from main import app_state, TrackerConfig
from storage.buffer_registry import BufferRegistry


@pytest.fixture(autouse=True)
def reset_app_state():
    """Reset all shared state before each test to prevent cross-test contamination."""
    app_state["registry"] = BufferRegistry()
    app_state["config"] = TrackerConfig()
    app_state["sweep_task"] = None
    app_state["evicted_buffers"] = []

    yield
