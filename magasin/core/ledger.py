"""Registre des mouvements de stock.

Toute modification de ``articles.stock`` passe par :func:`apply_stock_delta`,
qui écrit dans la même transaction la nouvelle valeur en cache et exactement
une ligne immuable dans ``stock_movements``. La vérification du stock
disponible est faite par la base elle-même (``UPDATE ... WHERE stock + ? >= 0``)
afin que des écrivains concurrents ne puissent pas passer sous zéro.
"""
from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

from magasin.core import db, models
from magasin.core.errors import InsufficientStockError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("magasin.ledger")


def _normalize_reason(reason: models.MovementReason | str) -> str:
    try:
        return models.MovementReason(reason).value
    except ValueError as exc:
        raise ValidationError(f"Motif de mouvement inconnu: {reason}") from exc


def apply_stock_delta(
    conn: sqlite3.Connection,
    article_id: int,
    delta: int,
    reason: models.MovementReason | str,
    *,
    actor: str,
    exit_id: int | None = None,
    entry_id: int | None = None,
    order_id: int | None = None,
    note: str | None = None,
    allow_negative: bool = False,
) -> models.StockAdjustResult:
    """Applique ``delta`` au stock de l'article dans la transaction ``conn``.

    Lève :class:`NotFoundError` si l'article n'existe pas et
    :class:`InsufficientStockError` si le stock deviendrait négatif (sauf
    ``allow_negative``). Dans les deux cas rien n'est écrit.
    Aucune ligne d'audit n'est émise ici: l'appelant passe les résultats à
    :func:`log_committed` une fois la transaction validée.
    """

    if delta == 0:
        raise ValidationError("La variation de stock doit être non nulle")
    reason_code = _normalize_reason(reason)
    row = conn.execute("SELECT stock FROM articles WHERE id = ?", (article_id,)).fetchone()
    if row is None:
        raise NotFoundError("Article introuvable")

    if allow_negative:
        cur = conn.execute(
            "UPDATE articles SET stock = stock + ? WHERE id = ?",
            (delta, article_id),
        )
    else:
        cur = conn.execute(
            "UPDATE articles SET stock = stock + ? WHERE id = ? AND stock + ? >= 0",
            (delta, article_id, delta),
        )
    if cur.rowcount == 0:
        raise InsufficientStockError(article_id, available=row["stock"], requested=-delta)

    movement_cur = conn.execute(
        """
        INSERT INTO stock_movements (
            article_id, delta, reason, actor, exit_id, entry_id, order_id, note, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (article_id, delta, reason_code, actor, exit_id, entry_id, order_id, note, db.utcnow_iso()),
    )
    new_stock = conn.execute(
        "SELECT stock FROM articles WHERE id = ?", (article_id,)
    ).fetchone()["stock"]
    return models.StockAdjustResult(
        article_id=article_id,
        new_stock=new_stock,
        ledger_entry_id=movement_cur.lastrowid,
    )


def log_committed(results: Iterable[models.StockAdjustResult]) -> None:
    """Écrit une ligne d'audit par mouvement validé, relue depuis le registre."""

    stock_by_entry = {result.ledger_entry_id: result.new_stock for result in results}
    if not stock_by_entry or not audit_logger.isEnabledFor(logging.INFO):
        return
    placeholders = ", ".join("?" for _ in stock_by_entry)
    with db.get_stock_connection() as conn:
        rows = conn.execute(
            f"SELECT * FROM stock_movements WHERE id IN ({placeholders}) ORDER BY id",
            tuple(stock_by_entry),
        ).fetchall()
    for row in rows:
        audit_logger.info(
            "article=%s delta=%+d reason=%s actor=%s stock=%s exit=%s entry=%s order=%s",
            row["article_id"],
            row["delta"],
            row["reason"],
            row["actor"],
            stock_by_entry[row["id"]],
            row["exit_id"],
            row["entry_id"],
            row["order_id"],
        )


def adjust_stock(
    article_id: int,
    delta: int,
    reason: models.MovementReason | str = models.MovementReason.adjustment,
    *,
    actor: str,
    note: str | None = None,
    allow_negative: bool = False,
) -> models.StockAdjustResult:
    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        result = apply_stock_delta(
            conn,
            article_id,
            delta,
            reason,
            actor=actor,
            note=note,
            allow_negative=allow_negative,
        )
    log_committed([result])
    logger.info(
        "[LEDGER] adjust article=%s delta=%+d new_stock=%s actor=%s override=%s",
        article_id,
        delta,
        result.new_stock,
        actor,
        allow_negative,
    )
    return result


def correct_stock(
    article_id: int, counted: int, *, actor: str, note: str | None = None
) -> models.StockAdjustResult | None:
    """Aligne le stock sur un comptage physique via une écriture d'ajustement."""

    if counted < 0:
        raise ValidationError("La quantité comptée doit être positive ou nulle")
    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        row = conn.execute("SELECT stock FROM articles WHERE id = ?", (article_id,)).fetchone()
        if row is None:
            raise NotFoundError("Article introuvable")
        difference = counted - row["stock"]
        if difference == 0:
            return None
        result = apply_stock_delta(
            conn,
            article_id,
            difference,
            models.MovementReason.adjustment,
            actor=actor,
            note=note or f"Inventaire: {row['stock']} -> {counted}",
            allow_negative=True,
        )
    log_committed([result])
    logger.info("[LEDGER] inventory article=%s counted=%s actor=%s", article_id, counted, actor)
    return result


def _build_entry(row: sqlite3.Row) -> models.LedgerEntry:
    return models.LedgerEntry(
        id=row["id"],
        article_id=row["article_id"],
        delta=row["delta"],
        reason=row["reason"],
        actor=row["actor"],
        exit_id=row["exit_id"],
        entry_id=row["entry_id"],
        order_id=row["order_id"],
        note=row["note"],
        created_at=row["created_at"],
    )


def list_movements(article_id: int) -> list[models.LedgerEntry]:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        if conn.execute("SELECT 1 FROM articles WHERE id = ?", (article_id,)).fetchone() is None:
            raise NotFoundError("Article introuvable")
        rows = conn.execute(
            "SELECT * FROM stock_movements WHERE article_id = ? ORDER BY id DESC",
            (article_id,),
        ).fetchall()
        return [_build_entry(row) for row in rows]


def ledger_balance(conn: sqlite3.Connection, article_id: int) -> int:
    row = conn.execute(
        "SELECT COALESCE(SUM(delta), 0) AS total FROM stock_movements WHERE article_id = ?",
        (article_id,),
    ).fetchone()
    return int(row["total"])


def verify_article(article_id: int) -> models.LedgerCheck:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        row = conn.execute("SELECT stock FROM articles WHERE id = ?", (article_id,)).fetchone()
        if row is None:
            raise NotFoundError("Article introuvable")
        total = ledger_balance(conn, article_id)
    if total != row["stock"]:
        logger.warning(
            "[LEDGER] article=%s cached stock %s differs from ledger total %s",
            article_id,
            row["stock"],
            total,
        )
    return models.LedgerCheck(
        article_id=article_id,
        cached_stock=row["stock"],
        ledger_total=total,
        consistent=total == row["stock"],
    )
