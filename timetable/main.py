"""FastAPI application: schedule service, optimizer and analytics."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from timetable import config
from timetable.analytics.aggregator import AnalyticsAggregator
from timetable.config import BrokerSettings
from timetable.domain.bus import EventBus
from timetable.domain.errors import ConflictError, NotFoundError, ValidationError
from timetable.domain.events import EventKind
from timetable.domain.models import (
    AnalyticsEvent,
    ConflictReport,
    OptimizationAccepted,
    Schedule,
    ScheduleMetrics,
    ScheduleRequest,
    SystemStatistics,
)
from timetable.messaging.consumer import EventConsumer
from timetable.messaging.publisher import EventPublisher
from timetable.services.optimizer import Optimizer
from timetable.services.scheduling import ScheduleService
from timetable.services.store import ScheduleStore

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ── Singletons ────────────────────────────────────────────────────────
broker_settings = BrokerSettings.from_env()
publisher = EventPublisher(broker_settings)
store = ScheduleStore()
schedule_service = ScheduleService(store=store, publisher=publisher)
optimizer = Optimizer(
    store=store, publisher=publisher, delay=config.OPTIMIZATION_DELAY_SECONDS
)

analytics_bus = EventBus()
aggregator = AnalyticsAggregator()
aggregator.register(analytics_bus)
analytics_consumer = EventConsumer(
    broker_settings,
    analytics_bus,
    bindings=[kind.routing_key for kind in EventKind],
    name="analytics",
)


def _log_consumer_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Analytics consumer stopped: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Schedule service starting up...")
    # A publisher that never connects is fatal: let PublishError propagate.
    await publisher.start()
    consumer_task = asyncio.create_task(analytics_consumer.run())
    consumer_task.add_done_callback(_log_consumer_exit)
    yield
    logger.info("Schedule service shutting down...")
    await optimizer.wait_idle()
    consumer_task.cancel()
    with suppress(asyncio.CancelledError, Exception):
        await consumer_task
    await publisher.close()


app = FastAPI(title="Schedule Service", lifespan=lifespan)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning("Validation error for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    )
    logger.warning("Malformed request for %s: %s", request.url.path, details)
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {details}"})


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    return JSONResponse(
        status_code=400,
        content={"error": exc.message, "conflicts": exc.descriptions},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ── Schedules ─────────────────────────────────────────────────────────


@app.get("/schedules", response_model=list[Schedule])
def list_schedules() -> list[Schedule]:
    """Return all stored schedules."""
    return store.list()


@app.get("/schedules/{schedule_id}", response_model=Schedule)
def get_schedule(schedule_id: int) -> Schedule:
    return store.get(schedule_id)


@app.post("/schedules", response_model=Schedule, status_code=201)
async def create_schedule(payload: ScheduleRequest) -> Schedule:
    """Validate, conflict-check and store a new schedule."""
    return await schedule_service.create(payload)


@app.put("/schedules/{schedule_id}", response_model=Schedule)
async def update_schedule(schedule_id: int, payload: ScheduleRequest) -> Schedule:
    return await schedule_service.update(schedule_id, payload)


@app.delete("/schedules/{schedule_id}", status_code=204)
async def delete_schedule(schedule_id: int) -> Response:
    await schedule_service.delete(schedule_id)
    return Response(status_code=204)


@app.post(
    "/schedules/{schedule_id}/optimize",
    response_model=OptimizationAccepted,
    status_code=202,
)
async def optimize_schedule(schedule_id: int) -> OptimizationAccepted:
    """Kick off an optimization run; progress is reported via events only."""
    await optimizer.start(schedule_id)
    return OptimizationAccepted(schedule_id=schedule_id)


@app.post("/schedules/{schedule_id}/check-conflicts")
async def check_conflicts(schedule_id: int) -> dict:
    conflicts = await schedule_service.check_conflicts(schedule_id)
    if conflicts:
        return ConflictReport(conflicts=[c.description for c in conflicts]).model_dump()
    return {"message": "No conflicts"}


@app.post("/schedules/{schedule_id}/publish", response_model=Schedule)
async def publish_schedule(schedule_id: int) -> Schedule:
    return await schedule_service.publish(schedule_id)


@app.post("/schedules/{schedule_id}/archive", response_model=Schedule)
async def archive_schedule(schedule_id: int) -> Schedule:
    return await schedule_service.archive(schedule_id)


# ── Analytics ─────────────────────────────────────────────────────────


@app.get("/analytics/stats", response_model=SystemStatistics)
def get_statistics() -> SystemStatistics:
    return aggregator.snapshot()


@app.get("/analytics/schedule/{schedule_id}", response_model=ScheduleMetrics)
def get_schedule_metrics(schedule_id: int) -> ScheduleMetrics:
    metrics = aggregator.schedule_metrics(schedule_id)
    if metrics is None:
        raise HTTPException(status_code=404, detail="No metrics for schedule")
    return metrics


@app.get("/analytics/events", response_model=list[AnalyticsEvent])
def get_recent_events() -> list[AnalyticsEvent]:
    """Return the most recent events, newest first."""
    return aggregator.recent_events()
