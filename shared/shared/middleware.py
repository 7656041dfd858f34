import hashlib
import json
import logging
import time
import uuid
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from . import redis_client as redis_store

logger = logging.getLogger("shared.access")

_EXEMPT_PATHS = ("/docs", "/openapi.json", "/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(json.dumps({
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": 500,
                "duration_ms": round(duration_ms, 2),
            }))
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Id"] = request_id

        logger.info(json.dumps({
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "user_sub": getattr(request.state, "user_sub", None),
            "user_roles": getattr(request.state, "user_roles", None),
        }))
        return response


def client_identity(request: Request) -> str:
    """
    Admission identity: client IP plus a digest of the bearer header, so
    callers behind one NAT with different tokens get separate windows.
    """
    ip = request.client.host if request.client else "unknown"
    auth = request.headers.get("Authorization")
    if not auth:
        return f"ip:{ip}"
    digest = hashlib.sha256(auth.encode("utf-8")).hexdigest()[:16]
    return f"ip:{ip}:auth:{digest}"


async def hit_fixed_window(key_prefix: str, identity: str, limit: int, window_seconds: int) -> tuple[bool, int]:
    """
    Count one request in the current window. Returns (admitted, count).
    """
    window = int(time.time() // window_seconds)
    key = f"{key_prefix}:{identity}:{window}"

    count = await redis_store.redis_client.incr(key)
    if count == 1:
        await redis_store.redis_client.expire(key, window_seconds + 10)

    return count <= limit, count


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_per_minute: int = 120):
        super().__init__(app)
        self.max_per_minute = max_per_minute

    async def dispatch(self, request: Request, call_next):
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)
        if request.url.path.startswith("/docs/"):
            return await call_next(request)

        admitted, _ = await hit_fixed_window(
            "rl", client_identity(request), self.max_per_minute, 60
        )
        if not admitted:
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests"},
                headers={"Retry-After": "60"},
            )

        return await call_next(request)
