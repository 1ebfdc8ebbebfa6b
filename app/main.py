import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.background.workers import PeriodicWorker, run_daily_refill_cycle, run_due_provider_syncs
from app.core.config import get_settings
from app.core.exceptions import PharmacyError
from app.core.logging_config import configure_logging

settings = get_settings()
configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    workers: list[PeriodicWorker] = []
    if settings.refill_scheduler_enabled:
        workers.append(
            PeriodicWorker(
                "refill-scheduler",
                settings.refill_scheduler_interval_seconds,
                run_daily_refill_cycle,
            )
        )
    if settings.inventory_sync_enabled:
        workers.append(
            PeriodicWorker(
                "inventory-sync",
                settings.inventory_sync_poll_seconds,
                run_due_provider_syncs,
            )
        )

    for worker in workers:
        worker.start()
    try:
        yield
    finally:
        for worker in workers:
            worker.stop()


app = FastAPI(
    title="Pharmacy Fulfillment Backend",
    lifespan=lifespan,
)


@app.exception_handler(PharmacyError)
async def pharmacy_error_handler(request: Request, exc: PharmacyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": type(exc).__name__},
    )


@app.get("/health", tags=["health"])
async def root_health() -> dict:
    """
    Global health check endpoint.
    """
    return {"status": "ok"}


# Mount versioned API router
app.include_router(api_router, prefix=settings.api_v1_prefix)
