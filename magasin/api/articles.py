"""Routes articles: référentiel, ajustements de stock et registre."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from magasin.api.deps import get_current_actor, http_error
from magasin.core import catalog, config, ledger, models, procurement
from magasin.core.errors import StockError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=models.Article, status_code=201)
async def create_article(
    payload: models.ArticleCreate,
    actor: models.Actor = Depends(get_current_actor),
) -> models.Article:
    try:
        return catalog.create_article(payload, actor=actor.username)
    except StockError as exc:
        raise http_error(exc) from exc


@router.get("/", response_model=list[models.Article])
async def list_articles(search: str | None = Query(default=None)) -> list[models.Article]:
    return catalog.list_articles(search)


@router.get("/{article_id}", response_model=models.Article)
async def get_article(article_id: int) -> models.Article:
    try:
        return catalog.get_article(article_id)
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/{article_id}/adjust", response_model=models.StockAdjustResult)
async def adjust_stock(
    article_id: int,
    payload: models.StockAdjustment,
    actor: models.Actor = Depends(get_current_actor),
) -> models.StockAdjustResult:
    if payload.allow_negative and actor.role not in config.settings.PRIVILEGED_ROLES:
        raise HTTPException(status_code=403, detail="Autorisations insuffisantes")
    try:
        return ledger.adjust_stock(
            article_id,
            payload.delta,
            payload.reason,
            actor=actor.username,
            note=payload.note,
            allow_negative=payload.allow_negative,
        )
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/{article_id}/inventory", response_model=models.StockAdjustResult)
async def record_inventory(
    article_id: int,
    payload: models.InventoryCount,
    actor: models.Actor = Depends(get_current_actor),
):
    if actor.role not in config.settings.PRIVILEGED_ROLES:
        raise HTTPException(status_code=403, detail="Autorisations insuffisantes")
    try:
        result = ledger.correct_stock(
            article_id, payload.counted, actor=actor.username, note=payload.note
        )
    except StockError as exc:
        raise http_error(exc) from exc
    if result is None:
        return Response(status_code=204)
    return result


@router.get("/{article_id}/movements", response_model=list[models.LedgerEntry])
async def list_movements(article_id: int) -> list[models.LedgerEntry]:
    try:
        return ledger.list_movements(article_id)
    except StockError as exc:
        raise http_error(exc) from exc


@router.get("/{article_id}/ledger-check", response_model=models.LedgerCheck)
async def ledger_check(article_id: int) -> models.LedgerCheck:
    try:
        return ledger.verify_article(article_id)
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/{article_id}/suppliers", response_model=models.SupplierLink, status_code=201)
async def link_supplier(
    article_id: int, payload: models.SupplierLinkCreate
) -> models.SupplierLink:
    try:
        return catalog.link_supplier(article_id, payload)
    except StockError as exc:
        raise http_error(exc) from exc


@router.get("/{article_id}/supplier", response_model=models.SupplierResolution)
async def resolve_supplier(article_id: int) -> models.SupplierResolution:
    try:
        resolution = procurement.resolve_supplier(article_id)
    except StockError as exc:
        raise http_error(exc) from exc
    if resolution is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "UNRESOLVED_SUPPLIER", "message": "Aucun fournisseur pour cet article"},
        )
    return resolution
