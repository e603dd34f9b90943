"""Routes des sorties de stock et des retours de location."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from magasin.api.deps import get_current_actor, http_error
from magasin.core import exits, models
from magasin.core.errors import StockError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=models.StockExit, status_code=201)
async def create_exit(
    payload: models.StockExitCreate,
    actor: models.Actor = Depends(get_current_actor),
) -> models.StockExit:
    try:
        return exits.create_exit(payload, actor)
    except StockError as exc:
        raise http_error(exc) from exc


@router.get("/", response_model=list[models.StockExit])
async def list_exits(
    include_deleted: bool = Query(False, description="Inclure les sorties supprimées"),
    actor: models.Actor = Depends(get_current_actor),
) -> list[models.StockExit]:
    return exits.list_exits(include_deleted=include_deleted, actor=actor)


@router.get("/rentals", response_model=list[models.StockExit])
async def list_active_rentals(
    actor: models.Actor = Depends(get_current_actor),
) -> list[models.StockExit]:
    return exits.list_active_rentals(actor=actor)


@router.get("/{exit_id}", response_model=models.StockExit)
async def get_exit(
    exit_id: int, actor: models.Actor = Depends(get_current_actor)
) -> models.StockExit:
    try:
        return exits.get_exit(exit_id, actor)
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/{exit_id}/return", response_model=models.StockExit)
async def process_return(
    exit_id: int,
    payload: models.ReturnPayload,
    actor: models.Actor = Depends(get_current_actor),
) -> models.StockExit:
    try:
        return exits.process_return(exit_id, payload, actor)
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/{exit_id}/delete", response_model=models.StockExit)
async def delete_exit(
    exit_id: int,
    payload: models.DeletionPayload,
    actor: models.Actor = Depends(get_current_actor),
) -> models.StockExit:
    try:
        current = exits.get_exit(exit_id, actor)
        if current.status is models.ExitStatus.active and not current.deletable:
            logger.warning(
                "[EXIT] deletion refused id=%s actor=%s role=%s",
                exit_id,
                actor.username,
                actor.role,
            )
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "FORBIDDEN",
                    "message": "Suppression réservée aux administrateurs dans le délai autorisé",
                },
            )
        return exits.soft_delete_exit(exit_id, payload.reason, actor)
    except StockError as exc:
        raise http_error(exc) from exc
