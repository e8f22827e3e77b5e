"""Helpers to persist structured outcomes of ledger operations."""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from .. import models
from ..database import read_bool_env
from .errors import ConcurrentUpdateError

LOGGER = logging.getLogger(__name__)

METRICS_ENABLED_ENV = "LEDGER_METRICS_ENABLED"


class MetricOutcome(str):
    SUCCESS = "success"
    REJECTED = "rejected"
    CONFLICT = "conflict"
    ERROR = "error"


def outcome_for(exc: BaseException | None) -> str:
    if exc is None:
        return MetricOutcome.SUCCESS
    if isinstance(exc, ConcurrentUpdateError):
        return MetricOutcome.CONFLICT
    if isinstance(exc, (ValueError, LookupError)):
        return MetricOutcome.REJECTED
    return MetricOutcome.ERROR


class ObservabilityService:
    """Centralizes recording of ledger outcomes for dashboards and alerts."""

    @staticmethod
    def record_event(
        db: Session,
        event_type: str,
        outcome: str,
        *,
        duration_ms: float | None = None,
        tags: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not read_bool_env(METRICS_ENABLED_ENV, True):
            return
        payload = models.OperationalMetricEvent(
            event_type=event_type,
            outcome=outcome,
            duration_ms=Decimal(str(round(duration_ms, 3))) if duration_ms is not None else None,
            tags=tags or {},
            details=metadata or None,
        )
        ObservabilityService._persist(db, payload)

    @staticmethod
    def timed_event(db: Session, event_type: str, *, tags: dict[str, Any] | None = None):
        """Context manager measuring an operation and recording its outcome.

        Must wrap the whole ledger transaction so the event is written after
        the ledger unit has committed or rolled back.
        """

        class _Timer:
            def __enter__(self):
                self._start = time.perf_counter()
                return self

            def __exit__(self, exc_type, exc, tb):
                duration = (time.perf_counter() - self._start) * 1000
                outcome = outcome_for(exc)
                ObservabilityService.record_event(
                    db,
                    event_type,
                    outcome,
                    duration_ms=duration,
                    tags={key: str(value) for key, value in (tags or {}).items()},
                    metadata={"exception": str(exc)} if exc else None,
                )
                return False

        return _Timer()

    @staticmethod
    def _persist(db: Session, event: models.OperationalMetricEvent) -> None:
        try:
            engine = db.get_bind()
            with Session(bind=engine) as metrics_session:
                metrics_session.add(event)
                metrics_session.commit()
        except Exception:  # pragma: no cover - metrics failures should not break flows
            LOGGER.exception("Failed to persist operational metric event", exc_info=True)
