# Application entrypoint: configures logging, middleware, error handlers, startup routines, and API routers.
import logging
import os
import threading
import time
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import Base, DATABASE_URL, engine
from .errors import register_exception_handlers
from .routes.auth import router as auth_router
from .routes.bookings import router as bookings_router
from .routes.extensions import router as extensions_router
from .routes.flats import router as flats_router
from .routes.reviews import router as reviews_router
from .sweepers import sweep_expired_bookings

logger = logging.getLogger("flatrent.main")

# Seconds between background expiry passes; 0 turns the sweeper off (reads still reconcile lazily)
EXPIRY_SWEEP_SECONDS = int(os.getenv("EXPIRY_SWEEP_SECONDS", "60"))

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())


def _start_expiry_sweeper(interval_seconds: int) -> None:
    """
    Launch a daemon thread that periodically expires overdue leases.

    Behavior:
    - Call sweep_expired_bookings()
    - Sleep for `interval_seconds`
    Failures are logged and the worker tries again on the next interval.
    """
    def _loop() -> None:
        while True:
            try:
                changed = sweep_expired_bookings()
                if changed:
                    logger.info("sweeper.expired", extra={"flats": changed})
            except Exception:
                logger.exception("sweeper.failed")
            time.sleep(interval_seconds)

    t = threading.Thread(target=_loop, name="booking-expiry-sweeper", daemon=True)
    t.start()


# Parse CORS origins from a comma-separated env var.
# Note: '*' cannot be used with allow_credentials=True; we fall back to explicit localhost origins for dev.
def _parse_cors_origins(env_value: Optional[str]) -> List[str]:
    default_dev_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    if not env_value:
        return default_dev_origins

    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    if "*" in origins:
        return default_dev_origins

    return origins


app = FastAPI(title="FlatRent API", version="0.1.0")
allow_list = _parse_cors_origins(os.getenv("CORS_ORIGINS"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    # For local SQLite, auto-create tables; production DBs rely on Alembic migrations.
    if DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    if EXPIRY_SWEEP_SECONDS > 0:
        _start_expiry_sweeper(interval_seconds=EXPIRY_SWEEP_SECONDS)


# Simple liveness endpoint for container orchestrators and uptime checks
@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(auth_router, prefix="", tags=["auth"])
app.include_router(flats_router, prefix="/api/v1", tags=["flats"])
app.include_router(bookings_router, prefix="/api/v1", tags=["bookings"])
app.include_router(extensions_router, prefix="/api/v1", tags=["extensions"])
app.include_router(reviews_router, prefix="/api/v1", tags=["reviews"])
