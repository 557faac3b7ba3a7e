"""Routers package."""

from .aggregates import router as aggregates_router
from .clients import router as clients_router
from .consistency import router as consistency_router
from .payments import router as payments_router
from .units import router as units_router

__all__ = [
    "aggregates_router",
    "clients_router",
    "consistency_router",
    "payments_router",
    "units_router",
]
