"""Expose the billing FastAPI app and enforce local development CORS defaults."""

import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .migrations import run_database_migrations
from .routers import (
    aggregates_router,
    clients_router,
    consistency_router,
    payments_router,
    units_router,
)
from .services.errors import ValidationError

LOCAL_DEVELOPMENT_ORIGINS = {
    "http://localhost:5174",
    "http://localhost:5173",
}
LOCALHOST_ORIGIN_REGEX = r"https?://(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?$"

DEFAULT_ALLOWED_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://0.0.0.0:5173",
    *LOCAL_DEVELOPMENT_ORIGINS,
    "http://127.0.0.1:5174",
    "http://0.0.0.0:5174",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
}


def _normalize_origin(origin: str) -> str | None:
    stripped = origin.strip()
    if not stripped:
        return None
    return stripped.rstrip("/")


def _read_allowed_origins(raw_origins: Iterable[str]) -> list[str]:
    normalized = {_normalize_origin(origin) for origin in raw_origins}
    return sorted({origin for origin in normalized if origin})


def _split_raw_origins(raw_value: str) -> list[str]:
    """Split a raw origin string using commas or whitespace as separators."""

    return [origin for origin in re.split(r"[\s,]+", raw_value) if origin]


def _load_allowed_origins_from_env() -> list[str]:
    raw_value = os.getenv("BACKEND_ALLOWED_ORIGINS")
    if not raw_value:
        return []
    return _read_allowed_origins(_split_raw_origins(raw_value))


def _resolve_allowed_origins() -> list[str]:
    env_origins = _load_allowed_origins_from_env()
    if env_origins:
        origins = list(env_origins)
    else:
        origins = _read_allowed_origins(DEFAULT_ALLOWED_ORIGINS)

    missing_dev_origins = [
        origin for origin in LOCAL_DEVELOPMENT_ORIGINS if origin not in origins
    ]
    if missing_dev_origins:
        origins = _read_allowed_origins([*origins, *missing_dev_origins])

    return origins


def _read_bool_env(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(_: FastAPI):
    if _read_bool_env("RUN_MIGRATIONS_ON_STARTUP", True):
        ensure_database_is_ready()
    else:
        LOGGER.info("Startup migrations disabled via RUN_MIGRATIONS_ON_STARTUP")
    yield


app = FastAPI(title="SAMS Billing API", lifespan=lifespan)

LOGGER = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_allowed_origins(),
    allow_origin_regex=LOCALHOST_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed payloads as 400 with the billing error envelope."""

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "code": ValidationError.code,
                "message": "Request validation failed",
                "errors": jsonable_encoder(exc.errors()),
            }
        },
    )


app.include_router(clients_router, prefix="/clients", tags=["clients"])
app.include_router(units_router, prefix="/units", tags=["units"])
app.include_router(payments_router, prefix="/payments", tags=["payments"])
app.include_router(aggregates_router, prefix="/aggregates", tags=["aggregates"])
app.include_router(consistency_router, prefix="/consistency", tags=["consistency"])


def ensure_database_is_ready() -> None:
    """Apply pending database migrations when the service starts."""

    LOGGER.info("Ensuring database schema is up to date before serving requests")
    run_database_migrations()


@app.get("/", tags=["health"])
def read_root() -> dict[str, str]:
    """Return a simple health check response."""
    return {"status": "ok"}
