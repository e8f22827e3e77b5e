"""Billing ledger backend package."""

from __future__ import annotations


def get_app():
    """Return the FastAPI application, imported on first use."""

    from .main import app

    return app


__all__ = ["get_app"]
