"""Business logic related to clients and their units."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..money import cents_from_major
from ..settings import get_settings
from .errors import InconsistentState, NotFound, TransientStoreError, ValidationError
from .ledger import ChargeLedger

LOGGER = logging.getLogger(__name__)


class ClientService:
    """Encapsulates CRUD operations for clients and units."""

    COLUMN_ALIASES = {
        "unit": "unit_code",
        "code": "unit_code",
        "unidad": "unit_code",
        "owner": "owner_name",
        "propietario": "owner_name",
        "charge": "periodic_charge",
        "cuota": "periodic_charge",
        "monthly_charge": "periodic_charge",
        "balance": "opening_balance",
        "saldo": "opening_balance",
        "credit_balance": "opening_balance",
    }
    REQUIRED_COLUMNS = {"unit_code"}
    MONEY_COLUMNS = {
        "periodic_charge": "periodic_charge_cents",
        "opening_balance": "opening_credit_balance_cents",
    }

    @staticmethod
    def create_client(db: Session, data: schemas.ClientCreate) -> models.Client:
        payload = data.model_dump()
        if "fiscal_year_start_month" not in data.model_fields_set:
            payload["fiscal_year_start_month"] = get_settings().default_fiscal_start_month
        client = models.Client(**payload)
        db.add(client)
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to create client %s", data.name)
            raise TransientStoreError("Unable to create the client at this time.") from exc
        db.refresh(client)
        LOGGER.info("Created client %s", client.id, extra={"client_name": client.name})
        return client

    @staticmethod
    def get_client(db: Session, client_id: str) -> models.Client:
        client = db.get(models.Client, client_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found")
        return client

    @staticmethod
    def list_clients(
        db: Session,
        *,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
    ) -> Tuple[Iterable[models.Client], int]:
        query = db.query(models.Client)
        if search:
            normalized = f"%{search.lower()}%"
            query = query.filter(func.lower(models.Client.name).like(normalized))

        total = query.count()
        items = (
            query.order_by(models.Client.name)
            .offset(max(skip, 0))
            .limit(max(limit, 1))
            .all()
        )
        return items, total

    @staticmethod
    def list_units(db: Session, client_id: str) -> list[models.Unit]:
        ClientService.get_client(db, client_id)
        return (
            db.query(models.Unit)
            .filter(models.Unit.client_id == client_id)
            .order_by(models.Unit.unit_code)
            .all()
        )

    @staticmethod
    def _add_unit(db: Session, client_id: str, data: schemas.UnitCreate) -> models.Unit:
        unit = models.Unit(
            client_id=client_id,
            unit_code=data.unit_code.strip(),
            owner_name=data.owner_name,
            periodic_charge_cents=data.periodic_charge_cents,
            credit_balance_cents=0,
        )
        db.add(unit)
        db.flush()
        ChargeLedger.change_credit_balance(
            db,
            unit,
            data.opening_credit_balance_cents,
            source=models.CreditSource.ADJUSTMENT,
            note="Opening balance",
        )
        return unit

    @classmethod
    def create_unit(cls, db: Session, client_id: str, data: schemas.UnitCreate) -> models.Unit:
        cls.get_client(db, client_id)
        try:
            unit = cls._add_unit(db, client_id, data)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise InconsistentState(
                f"Unit {data.unit_code!r} already exists for this client",
                code="duplicate_unit",
            ) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            LOGGER.exception("Failed to create unit %s", data.unit_code)
            raise TransientStoreError("Unable to create the unit at this time.") from exc
        db.refresh(unit)
        return unit

    @staticmethod
    def _normalize_header(header: Optional[str]) -> str:
        normalized = (header or "").strip().lower()
        return ClientService.COLUMN_ALIASES.get(normalized, normalized)

    @classmethod
    def import_units_from_csv(
        cls, db: Session, client_id: str, content: str
    ) -> schemas.UnitImportSummary:
        """Create units from a CSV payload and return a summary of the operation.

        Money columns are read in major units (``1500.00``). Rows are
        validated individually; one bad row does not prevent the others.
        """

        cls.get_client(db, client_id)
        reader = csv.DictReader(io.StringIO(content))
        if not reader.fieldnames:
            raise ValidationError("The file has no header row.")

        headers = {cls._normalize_header(header) for header in reader.fieldnames if header}
        missing = cls.REQUIRED_COLUMNS - headers
        if missing:
            raise ValidationError("Missing required columns: " + ", ".join(sorted(missing)))

        known_codes = {
            code
            for (code,) in db.query(models.Unit.unit_code).filter(
                models.Unit.client_id == client_id
            )
        }
        summary = _ImportAccumulator()

        for index, raw_row in enumerate(reader, start=2):
            row = {cls._normalize_header(key): value for key, value in (raw_row or {}).items()}
            if not any(_normalize_string(value) for value in row.values()):
                continue

            summary.total_rows += 1
            unit_code = _normalize_string(row.get("unit_code"))
            try:
                payload = cls._map_import_row(row)
                unit_in = schemas.UnitCreate.model_validate(payload)
                if unit_in.unit_code in known_codes:
                    raise _RowProcessingError(f"Unit {unit_in.unit_code} already exists.")
                cls._add_unit(db, client_id, unit_in)
                db.commit()
                known_codes.add(unit_in.unit_code)
                summary.created_count += 1
            except _RowProcessingError as exc:
                summary.register_error(index, str(exc), unit_code)
            except PydanticValidationError as exc:
                summary.register_error(index, cls._format_validation_errors(exc), unit_code)
            except IntegrityError as exc:
                db.rollback()
                summary.register_error(index, cls._describe_integrity_error(exc), unit_code)

        LOGGER.info(
            "Imported %s of %s units for client %s",
            summary.created_count,
            summary.total_rows,
            client_id,
        )
        return summary.build()

    @classmethod
    def _map_import_row(cls, row: dict[str, Optional[str]]) -> dict[str, object]:
        payload: dict[str, object] = {
            "unit_code": _normalize_string(row.get("unit_code")),
            "owner_name": _normalize_string(row.get("owner_name")),
        }
        for column, target in cls.MONEY_COLUMNS.items():
            raw = _normalize_string(row.get(column))
            if raw is not None:
                payload[target] = _parse_money(raw)
        return payload

    @staticmethod
    def _format_validation_errors(exc: PydanticValidationError) -> str:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", [])) or "general"
            messages.append(f"{location}: {error.get('msg') or 'invalid value'}")
        return "; ".join(messages)

    @staticmethod
    def _describe_integrity_error(error: IntegrityError) -> str:
        message = str(getattr(error, "orig", error))
        if "UNIQUE" in message.upper():
            return "The row duplicates a unit that already exists."
        return "The unit could not be stored because of a database constraint."


@dataclass
class _ImportAccumulator:
    total_rows: int = 0
    created_count: int = 0
    errors: list[schemas.UnitImportError] = field(default_factory=list)

    def register_error(self, row_number: int, message: str, unit_code: Optional[str]) -> None:
        self.errors.append(
            schemas.UnitImportError(row_number=row_number, message=message, unit_code=unit_code)
        )

    def build(self) -> schemas.UnitImportSummary:
        return schemas.UnitImportSummary(
            total_rows=self.total_rows,
            created_count=self.created_count,
            failed_count=len(self.errors),
            errors=self.errors,
        )


class _RowProcessingError(Exception):
    """Raised when an import row cannot be processed due to invalid data."""


def _normalize_string(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    candidate = str(value).strip()
    return candidate or None


def _parse_money(raw_value: str) -> int:
    candidate = raw_value.replace(",", "").replace("$", "").strip()
    try:
        return int(cents_from_major(Decimal(candidate)))
    except (InvalidOperation, TypeError) as exc:
        raise _RowProcessingError(f"The value '{raw_value}' must be a valid amount.") from exc
