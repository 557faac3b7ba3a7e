"""Shared schema definitions."""

from __future__ import annotations

from typing import Annotated, Generic, Sequence, TypeVar
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, Field

T = TypeVar("T")


def _coerce_identifier(value: object) -> object:
    if isinstance(value, UUID):
        return str(value)
    return value


# Callers may pass ``uuid.UUID`` objects; identifiers are always exposed as text.
Identifier = Annotated[str, BeforeValidator(_coerce_identifier)]


class PaginatedResponse(BaseModel, Generic[T]):
    """Standard shape for paginated listings."""

    items: Sequence[T]
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    skip: int = Field(..., ge=0)


class ErrorDetail(BaseModel):
    code: str
    message: str
