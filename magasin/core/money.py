from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")


def round_money(value: float | Decimal) -> float:
    """Arrondi commercial au centime."""

    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def order_totals(line_totals: list[float], tax_rate: float) -> tuple[float, float]:
    """Retourne ``(total_ht, total_ttc)`` pour des totaux de ligne et un taux de TVA."""

    total_ht = sum((Decimal(str(value)) for value in line_totals), Decimal("0"))
    total_ttc = total_ht * (Decimal("1") + Decimal(str(tax_rate)) / Decimal("100"))
    return round_money(total_ht), round_money(total_ttc)
