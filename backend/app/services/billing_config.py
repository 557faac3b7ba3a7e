"""Resolve and update per-module billing rules."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..settings import get_settings
from .errors import NotFound, TransientStoreError

LOGGER = logging.getLogger(__name__)


class BillingConfigService:
    """Clients without a stored configuration bill with environment defaults."""

    @staticmethod
    def default_config(client_id: str, module: models.BillingModule) -> models.BillingConfig:
        settings = get_settings()
        return models.BillingConfig(
            client_id=client_id,
            module=module,
            frequency=models.BillingFrequency.MONTHLY,
            due_day=1,
            penalty_mode=models.PenaltyMode.COMPOUNDING,
            penalty_rate=settings.default_penalty_rate,
            grace_days=settings.default_grace_days,
            allocation_policy=models.AllocationPolicy.BASE_FIRST,
            rate_per_m3_cents=0,
            minimum_charge_cents=0,
        )

    @classmethod
    def get_config(
        cls, db: Session, client_id: str, module: models.BillingModule
    ) -> models.BillingConfig:
        config = (
            db.query(models.BillingConfig)
            .filter(
                models.BillingConfig.client_id == client_id,
                models.BillingConfig.module == module,
            )
            .first()
        )
        if config is None:
            # Transient: never added to the session.
            return cls.default_config(client_id, module)
        return config

    @staticmethod
    def upsert_config(
        db: Session,
        client_id: str,
        module: models.BillingModule,
        data: schemas.BillingConfigUpdate,
    ) -> models.BillingConfig:
        if db.get(models.Client, client_id) is None:
            raise NotFound(f"Client {client_id} not found")

        config = (
            db.query(models.BillingConfig)
            .filter(
                models.BillingConfig.client_id == client_id,
                models.BillingConfig.module == module,
            )
            .first()
        )
        if config is None:
            config = models.BillingConfig(client_id=client_id, module=module)
            db.add(config)

        for key, value in data.model_dump().items():
            setattr(config, key, value)

        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to store billing config for client %s", client_id)
            raise TransientStoreError("Unable to store billing configuration.") from exc
        db.refresh(config)
        LOGGER.info(
            "Billing config for client %s module %s updated",
            client_id,
            module.value,
            extra={"penalty_mode": config.penalty_mode, "policy": config.allocation_policy},
        )
        return config
