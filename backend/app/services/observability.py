"""Helpers to persist structured operational metrics for billing flows."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from .. import models

LOGGER = logging.getLogger(__name__)


class MetricOutcome(str):
    SUCCESS = "success"
    REJECTED = "rejected"
    ERROR = "error"


class ObservabilityService:
    """Records payment, reversal and snapshot events.

    Events are written through their own session so a metrics failure never
    affects the caller's transaction. Callers record events only after their
    own transaction has been committed or rolled back.
    """

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
        payload = models.OperationalMetricEvent(
            event_type=event_type,
            outcome=outcome,
            duration_ms=Decimal(str(round(duration_ms, 3))) if duration_ms is not None else None,
            tags=tags or {},
            details=metadata or None,
        )
        ObservabilityService._persist(db, payload)

    @staticmethod
    def record_validation_result(
        db: Session,
        event_type: str,
        *,
        outcome: str,
        reason: str,
        code: str | None = None,
        tags: dict[str, Any] | None = None,
        duration_ms: float | None = None,
    ) -> None:
        ObservabilityService.record_event(
            db,
            event_type,
            outcome,
            duration_ms=duration_ms,
            tags={"reason": code or reason, **(tags or {})},
            metadata={"rejection_reason": reason},
        )

    @staticmethod
    def recent_events(
        db: Session, event_type: Optional[str] = None, *, limit: int = 50
    ) -> list[models.OperationalMetricEvent]:
        query = db.query(models.OperationalMetricEvent)
        if event_type:
            query = query.filter(models.OperationalMetricEvent.event_type == event_type)
        return (
            query.order_by(models.OperationalMetricEvent.created_at.desc())
            .limit(max(limit, 1))
            .all()
        )

    @staticmethod
    def _persist(db: Session, event: models.OperationalMetricEvent) -> None:
        try:
            engine = db.get_bind()
            with Session(bind=engine) as metrics_session:
                metrics_session.add(event)
                metrics_session.commit()
        except Exception:  # pragma: no cover - metrics failures should not break flows
            LOGGER.exception("Failed to persist operational metric event %s", event.event_type)
