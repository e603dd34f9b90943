"""Erreurs métier typées du registre de stock et des achats."""
from __future__ import annotations


class StockError(ValueError):
    code = "STOCK_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class NotFoundError(StockError):
    code = "NOT_FOUND"


class InsufficientStockError(StockError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, article_id: int, available: int, requested: int) -> None:
        super().__init__(
            f"Stock insuffisant pour l'article #{article_id} "
            f"(disponible={available}, demandé={requested})"
        )
        self.article_id = article_id
        self.available = available
        self.requested = requested


class InvalidTransitionError(StockError):
    code = "INVALID_TRANSITION"


class AlreadyDeletedError(StockError):
    code = "ALREADY_DELETED"


class ValidationError(StockError):
    code = "VALIDATION_ERROR"


__all__ = [
    "AlreadyDeletedError",
    "InsufficientStockError",
    "InvalidTransitionError",
    "NotFoundError",
    "StockError",
    "ValidationError",
]
