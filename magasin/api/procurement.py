"""Routes d'approvisionnement: plan, commandes issues des manques."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from magasin.api.deps import get_current_actor, http_error
from magasin.core import models, procurement
from magasin.core.errors import StockError

router = APIRouter()


@router.post("/plan", response_model=models.ProcurementPlan)
async def plan(payload: models.ProcurementRequest) -> models.ProcurementPlan:
    try:
        return procurement.build_order_groups(payload.demands)
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/orders", response_model=models.ProcurementResult)
async def create_orders(
    payload: models.ProcurementRequest,
    actor: models.Actor = Depends(get_current_actor),
) -> models.ProcurementResult:
    try:
        return procurement.build_procurement_orders(
            payload.demands, actor, force_new=payload.force_new
        )
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/revision", response_model=models.ProcurementResult)
async def revision_orders(
    payload: models.RevisionRequest,
    actor: models.Actor = Depends(get_current_actor),
) -> models.ProcurementResult:
    demands = procurement.revision_demands(payload.units, payload.parts)
    try:
        return procurement.build_procurement_orders(
            demands, actor, force_new=payload.force_new, source="revision"
        )
    except StockError as exc:
        raise http_error(exc) from exc


@router.post("/low-stock", response_model=models.ProcurementResult)
async def low_stock_orders(
    payload: models.LowStockRequest,
    actor: models.Actor = Depends(get_current_actor),
) -> models.ProcurementResult:
    try:
        return procurement.build_procurement_orders(
            procurement.low_stock_demands(),
            actor,
            force_new=payload.force_new,
            source="alerte_stock",
        )
    except StockError as exc:
        raise http_error(exc) from exc
