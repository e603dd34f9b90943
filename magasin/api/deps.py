"""Dépendances communes aux routes: identité de l'acteur et erreurs HTTP."""
from __future__ import annotations

from fastapi import Header, HTTPException
from pydantic import ValidationError as PydanticValidationError

from magasin.core import models
from magasin.core.errors import (
    AlreadyDeletedError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    StockError,
)

_STATUS_BY_ERROR: tuple[tuple[type[StockError], int], ...] = (
    (NotFoundError, 404),
    (InsufficientStockError, 409),
    (InvalidTransitionError, 409),
    (AlreadyDeletedError, 409),
)


async def get_current_actor(
    username: str | None = Header(None, alias="X-Actor"),
    role: str | None = Header(None, alias="X-Actor-Role"),
) -> models.Actor:
    try:
        return models.Actor(
            username=(username or "").strip() or "system",
            role=(role or "").strip().lower() or "magasinier",
        )
    except PydanticValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": "En-tête X-Actor invalide"},
        ) from exc


def http_error(exc: StockError) -> HTTPException:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        400,
    )
    return HTTPException(status_code=status_code, detail=exc.to_detail())
