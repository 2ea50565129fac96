# backend/evrent/main.py

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .errors import DomainError
from .middleware.rate_limit import rate_limit_middleware
from .redis_client import redis_client
from .routers import bookings, chargers, sessions, wallets
from .services.rate_limit import rate_limit_cleanup_loop
from .services.sweeps import sweeper_loop

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    tasks = [asyncio.create_task(rate_limit_cleanup_loop(getattr(app.state, "limiter", None)))]
    if settings.sweeps_enabled:
        tasks.append(asyncio.create_task(sweeper_loop()))

    yield

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


app = FastAPI(title="EV Charger Rental API", lifespan=lifespan)

app.middleware("http")(rate_limit_middleware)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(chargers.router)
app.include_router(bookings.router)
app.include_router(sessions.router)
app.include_router(wallets.router)


@app.get("/health")
def health():
    try:
        redis_ok = bool(redis_client.ping())
    except Exception:
        logger.warning("Redis ping failed", exc_info=True)
        redis_ok = False
    return {"status": "ok", "redis": redis_ok}
