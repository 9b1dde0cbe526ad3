import asyncio
import logging
import time
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from typing import Optional, List
from contextlib import asynccontextmanager

from eviction.timestamp_heap import INT64_MAX, INT64_MIN
from storage.buffer_registry import BufferRegistry, BufferState


logger = logging.getLogger(__name__)


class EventRequest(BaseModel):
    buffer_id: str
    timestamp_ms: Optional[int] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)


class SweepRequest(BaseModel):
    inactivity_ms: Optional[int] = Field(default=None, gt=0)
    now_ms: Optional[int] = Field(default=None, ge=INT64_MIN, le=INT64_MAX)


class TrackerConfig(BaseModel):
    inactivity_ms: int = Field(default=30000, gt=0)
    sweep_interval_ms: int = Field(default=1000, gt=0)
    max_idle_cycles: int = Field(default=100, ge=1)


class BufferResponse(BaseModel):
    buffer_id: str
    first_event_ms: int
    last_event_ms: int
    event_count: int


class SweepResponse(BaseModel):
    cutoff_ms: int
    evicted: List[BufferResponse]


class TrackerStatusResponse(BaseModel):
    tracked_buffers: int
    oldest_timestamp_ms: Optional[int] = None
    sweeping: bool


app_state = {
    "registry": None,
    "config": None,
    "sweep_task": None,
    "evicted_buffers": []
}


def now_ms():
    return int(time.time() * 1000)


def get_registry() -> BufferRegistry:
    if app_state["registry"] is None:
        app_state["registry"] = BufferRegistry()
    return app_state["registry"]


def get_config() -> TrackerConfig:
    if app_state["config"] is None:
        app_state["config"] = TrackerConfig()
    return app_state["config"]


def _to_response(state: BufferState) -> BufferResponse:
    return BufferResponse(
        buffer_id=state.buffer_id,
        first_event_ms=state.first_event_ms,
        last_event_ms=state.last_event_ms,
        event_count=state.event_count
    )


def is_sweeping():
    task = app_state["sweep_task"]
    return task is not None and not task.done()


def ensure_sweeper():
    if not is_sweeping():
        app_state["sweep_task"] = asyncio.create_task(sweep_loop())
        logger.info("buffer sweeper started")


async def stop_sweeper():
    task = app_state["sweep_task"]
    app_state["sweep_task"] = None
    if task is not None and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


async def sweep_loop():
    """Periodically evict buffers that have been idle past the configured window."""
    idle_cycles = 0

    while True:
        config = get_config()
        await asyncio.sleep(config.sweep_interval_ms / 1000)
        registry = get_registry()

        if registry.is_empty():
            idle_cycles += 1
            if idle_cycles >= config.max_idle_cycles:
                # Nothing tracked for long enough, stop until the next event
                app_state["sweep_task"] = None
                logger.info("buffer sweeper stopped after %d idle cycles", idle_cycles)
                return
            continue

        idle_cycles = 0
        evicted = await registry.expire_inactive(config.inactivity_ms, now_ms())
        if evicted:
            app_state["evicted_buffers"].extend(_to_response(s).model_dump() for s in evicted)
            logger.info("evicted %d inactive buffers", len(evicted))


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_state["registry"] = BufferRegistry()
    app_state["config"] = TrackerConfig()

    yield

    await stop_sweeper()


app = FastAPI(title="Event Buffer Expiry Tracker", lifespan=lifespan)


@app.post("/v1/buffers/events", response_model=BufferResponse)
async def record_event(request: EventRequest):
    timestamp = request.timestamp_ms if request.timestamp_ms is not None else now_ms()
    state = await get_registry().record_event(request.buffer_id, timestamp)
    ensure_sweeper()
    return _to_response(state)


@app.get("/v1/buffers/oldest", response_model=BufferResponse)
async def get_oldest_buffer():
    state = await get_registry().oldest()
    if state is None:
        raise HTTPException(status_code=404, detail="No buffers are being tracked")
    return _to_response(state)


@app.post("/v1/buffers/sweep", response_model=SweepResponse)
async def sweep_buffers(request: SweepRequest):
    config = get_config()
    inactivity = request.inactivity_ms if request.inactivity_ms is not None else config.inactivity_ms
    now = request.now_ms if request.now_ms is not None else now_ms()
    cutoff = now - inactivity

    evicted = await get_registry().expire(cutoff)
    if evicted:
        logger.info("manual sweep evicted %d buffers", len(evicted))

    return SweepResponse(
        cutoff_ms=cutoff,
        evicted=[_to_response(s) for s in evicted]
    )


@app.get("/v1/buffers/status", response_model=TrackerStatusResponse)
async def get_tracker_status():
    registry = get_registry()

    return TrackerStatusResponse(
        tracked_buffers=registry.size(),
        oldest_timestamp_ms=await registry.oldest_timestamp(),
        sweeping=is_sweeping()
    )


@app.put("/v1/tracker/config")
async def update_tracker_config(config: TrackerConfig):
    app_state["config"] = config
    return {"status": "updated", "config": config.model_dump()}


@app.get("/health")
async def health():
    return {"status": "healthy"}
