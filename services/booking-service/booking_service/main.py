import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.logging_config import configure_logging
from shared.middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .auto_complete import auto_complete_loop
from .availability_routes import router as availability_router
from .config import AUTO_COMPLETE_INTERVAL_SECONDS, RATE_LIMIT_PER_MINUTE
from .cron_routes import router as cron_router
from .notifications import publisher
from .payment_routes import router as payment_router
from .routes import router

configure_logging("booking-service")
logger = logging.getLogger(__name__)

app = FastAPI(title="Booking Service")

app.add_middleware(RateLimitMiddleware, max_per_minute=RATE_LIMIT_PER_MINUTE)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(router)
app.include_router(availability_router)
app.include_router(payment_router)
app.include_router(cron_router)

_stop_event = asyncio.Event()
_sweep_task = None


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health():
    return {"status": "ok", "service": "booking-service", "events_enabled": publisher.enabled}


@app.on_event("startup")
async def startup():
    global _sweep_task
    try:
        await publisher.connect()
    except Exception as e:
        logger.warning("RabbitMQ connect failed at startup; continuing: %s", e)

    if AUTO_COMPLETE_INTERVAL_SECONDS > 0:
        _stop_event.clear()
        _sweep_task = asyncio.create_task(
            auto_complete_loop(_stop_event, AUTO_COMPLETE_INTERVAL_SECONDS)
        )
        logger.info("Auto-complete sweep running every %ss", AUTO_COMPLETE_INTERVAL_SECONDS)


@app.on_event("shutdown")
async def shutdown():
    global _sweep_task
    _stop_event.set()
    if _sweep_task:
        await _sweep_task
        _sweep_task = None
    await publisher.close()
