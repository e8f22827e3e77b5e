"""Routers package."""

from .billing import router as billing_router
from .charges import router as charges_router
from .clients import router as clients_router
from .payments import router as payments_router

__all__ = [
    "billing_router",
    "charges_router",
    "clients_router",
    "payments_router",
]
