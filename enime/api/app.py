import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from enime.api.endpoints import base
from enime.api.endpoints import status as status_router
from enime.core.database import setup_database, teardown_database
from enime.core.execution import setup_runtime
from enime.core.logger import logger
from enime.core.models import settings
from enime.services.batcher import JobBatcher
from enime.services.consumer import QueueConsumer
from enime.services.job_queue import job_queue
from enime.services.scheduler import ReconciliationScheduler
from enime.services.staleness import StalenessDetector
from enime.utils.network_manager import network_manager
from enime.workers.dispatcher import WorkerDispatcher


class LoguruMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            logger.exception(f"Unhandled error on {request.method} {request.url.path}: {e}")
            raise
        finally:
            logger.log(
                "API",
                f"{request.method} {request.url.path} -> {status_code} in {time.perf_counter() - started:.3f}s",
            )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_runtime(settings.DETERMINISTIC_TIME_MODE)
    await setup_database()

    scheduler = ReconciliationScheduler(
        StalenessDetector(), JobBatcher(), WorkerDispatcher("metadata")
    )
    consumer = QueueConsumer()
    app.state.scheduler = scheduler
    app.state.consumer = consumer
    app.state.queue = job_queue

    await consumer.start()

    scheduler_task = None
    if settings.SCHEDULER_ENABLED:
        scheduler_task = asyncio.create_task(scheduler.start())

    try:
        yield
    finally:
        if scheduler_task:
            scheduler_task.cancel()
            try:
                await scheduler_task
            except asyncio.CancelledError:
                pass
        await scheduler.stop()
        await consumer.stop()
        await network_manager.close_all()

        await teardown_database()


app = FastAPI(
    title="Enime",
    summary="Anime catalog reconciliation and scrape orchestration.",
    lifespan=lifespan,
    redoc_url=None,
)


app.add_middleware(LoguruMiddleware)

app.include_router(base.router)
app.include_router(status_router.router)
