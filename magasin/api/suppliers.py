"""Routes fournisseurs."""
from __future__ import annotations

from fastapi import APIRouter

from magasin.api.deps import http_error
from magasin.core import catalog, models
from magasin.core.errors import StockError

router = APIRouter()


@router.get("/", response_model=list[models.Supplier])
async def list_suppliers() -> list[models.Supplier]:
    return catalog.list_suppliers()


@router.post("/", response_model=models.Supplier, status_code=201)
async def create_supplier(payload: models.SupplierCreate) -> models.Supplier:
    try:
        return catalog.create_supplier(payload)
    except StockError as exc:
        raise http_error(exc) from exc
