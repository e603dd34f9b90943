"""Routes des entrées de stock."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from magasin.api.deps import get_current_actor, http_error
from magasin.core import entries, models
from magasin.core.errors import StockError

router = APIRouter()


@router.post("/", response_model=models.StockEntry, status_code=201)
async def create_entry(
    payload: models.StockEntryCreate,
    actor: models.Actor = Depends(get_current_actor),
) -> models.StockEntry:
    try:
        return entries.create_entry(payload, actor)
    except StockError as exc:
        raise http_error(exc) from exc


@router.get("/{entry_id}", response_model=models.StockEntry)
async def get_entry(entry_id: int) -> models.StockEntry:
    try:
        return entries.get_entry(entry_id)
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/{entry_id}/delete", response_model=models.StockEntry)
async def delete_entry(
    entry_id: int,
    payload: models.DeletionPayload,
    actor: models.Actor = Depends(get_current_actor),
) -> models.StockEntry:
    try:
        return entries.soft_delete_entry(entry_id, payload.reason, actor)
    except StockError as exc:
        raise http_error(exc) from exc
