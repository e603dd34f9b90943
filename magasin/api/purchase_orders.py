"""Routes des bons de commande fournisseurs."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Query

from magasin.api.deps import get_current_actor, http_error
from magasin.core import models, orders
from magasin.core.errors import StockError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=list[models.PurchaseOrder])
async def list_orders(
    status: models.OrderStatus | None = Query(None, description="Filtrer par statut"),
    fournisseur: str | None = Query(None, description="Filtrer par fournisseur"),
) -> list[models.PurchaseOrder]:
    return orders.list_orders(status=status, supplier_name=fournisseur)


@router.post("/drafts", response_model=models.PurchaseOrder)
async def merge_or_create_draft(
    payload: models.DraftMergeRequest,
    actor: models.Actor = Depends(get_current_actor),
    request_id: str | None = Header(None, alias="X-Request-Id"),
) -> models.PurchaseOrder:
    logger.info(
        "[ORDER] draft request request_id=%s actor=%s fournisseur=%s force_new=%s",
        request_id,
        actor.username,
        payload.supplier_name,
        payload.force_new,
    )
    try:
        return orders.merge_or_create_draft(payload, actor)
    except StockError as exc:
        raise http_error(exc) from exc


@router.get("/{order_id}", response_model=models.PurchaseOrder)
async def get_order(order_id: int) -> models.PurchaseOrder:
    try:
        return orders.get_order(order_id)
    except StockError as exc:
        raise http_error(exc) from exc


@router.patch("/{order_id}/status", response_model=models.PurchaseOrder)
async def update_status(
    order_id: int,
    payload: models.OrderStatusUpdate,
    actor: models.Actor = Depends(get_current_actor),
) -> models.PurchaseOrder:
    try:
        return orders.update_order_status(order_id, payload.status, actor)
    except StockError as exc:
        raise http_error(exc) from exc


@router.put("/{order_id}/lines/{line_id}", response_model=models.PurchaseOrder)
async def update_line(
    order_id: int, line_id: int, payload: models.OrderLineUpdate
) -> models.PurchaseOrder:
    try:
        return orders.update_order_line(order_id, line_id, payload)
    except StockError as exc:
        raise http_error(exc) from exc


@router.delete("/{order_id}/lines/{line_id}", response_model=models.PurchaseOrder)
async def remove_line(order_id: int, line_id: int) -> models.PurchaseOrder:
    try:
        return orders.remove_order_line(order_id, line_id)
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/{order_id}/receive", response_model=models.PurchaseOrder)
async def receive_order(
    order_id: int,
    payload: models.ReceptionPayload,
    actor: models.Actor = Depends(get_current_actor),
) -> models.PurchaseOrder:
    try:
        return orders.receive_order(order_id, payload, actor)
    except StockError as exc:
        raise http_error(exc) from exc
