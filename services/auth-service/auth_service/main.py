import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.logging_config import configure_logging
from shared.middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .audit_routes import router as audit_router
from .config import RATE_LIMIT_PER_MINUTE
from .otp_routes import router as otp_router
from .routes import router

configure_logging("auth-service")
logger = logging.getLogger(__name__)

app = FastAPI(title="Auth Service")

app.add_middleware(RateLimitMiddleware, max_per_minute=RATE_LIMIT_PER_MINUTE)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(router)
app.include_router(otp_router)
app.include_router(audit_router)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health():
    return {"status": "ok", "service": "auth-service"}
