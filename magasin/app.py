"""Application FastAPI principale pour Gestion Magasin."""
from fastapi import FastAPI

from magasin.api import articles, entries, exits, procurement, purchase_orders, suppliers
from magasin.core.logging_config import configure_logging

configure_logging()

app = FastAPI(title="Gestion Magasin API", version="1.0.0")

app.include_router(articles.router, prefix="/articles", tags=["articles"])
app.include_router(suppliers.router, prefix="/suppliers", tags=["suppliers"])
app.include_router(exits.router, prefix="/exits", tags=["exits"])
app.include_router(entries.router, prefix="/entries", tags=["entries"])
app.include_router(purchase_orders.router, prefix="/purchase-orders", tags=["purchase-orders"])
app.include_router(procurement.router, prefix="/procurement", tags=["procurement"])


@app.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    """Renvoie l'état de santé générique du service."""
    return {"status": "ok"}
