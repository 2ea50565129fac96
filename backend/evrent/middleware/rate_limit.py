# backend/evrent/middleware/rate_limit.py
"""
Request rate limiting.

Limits:
- By IP (anonymous clients)
- By user id (authenticated clients, per role)
"""

import logging

from fastapi import Request
from starlette.responses import JSONResponse

from ..services.rate_limit import get_limiter

logger = logging.getLogger(__name__)


# ============================================================
# RATE LIMIT CONFIGURATION
# ============================================================

RATE_LIMITS = {
    # Anonymous clients, keyed by IP
    "public": {"limit": 100, "window": 60},
    "driver": {"limit": 200, "window": 60},
    "owner": {"limit": 500, "window": 60},
    "admin": {"limit": 1000, "window": 60},
}

EXEMPT_PATHS = ("/health",)


def _client(request: Request) -> tuple[str, str]:
    """Return (client_type, key) for the request."""
    user_id = request.headers.get("X-User-Id")
    role = (request.headers.get("X-User-Role") or "driver").lower()
    if user_id:
        return (role if role in RATE_LIMITS else "driver"), f"user:{user_id}"

    ip = request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")
    return "public", f"ip:{ip}"


# ============================================================
# MIDDLEWARE
# ============================================================

async def rate_limit_middleware(request: Request, call_next):
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    limiter = getattr(request.app.state, "limiter", None) or get_limiter()
    client_type, key = _client(request)
    config = RATE_LIMITS[client_type]

    try:
        result = limiter.hit(key, config["limit"], config["window"])
    except Exception as e:
        logger.error(f"Rate limit check failed: {e}")
        return await call_next(request)  # fail open

    if not result.allowed:
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded", "code": "rate_limited"},
            headers={"Retry-After": str(result.retry_after)},
        )

    response = await call_next(request)
    response.headers["X-RateLimit-Limit"] = str(result.limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    return response
