"""Entrées de stock (réceptions hors commande, retours, transferts...)."""
from __future__ import annotations

import logging
import sqlite3

from magasin.core import catalog, db, ledger, models
from magasin.core.errors import AlreadyDeletedError, NotFoundError, ValidationError
from magasin.core.money import round_money

logger = logging.getLogger(__name__)

ENTRY_REASONS: dict[models.EntryType, models.MovementReason] = {
    models.EntryType.achat: models.MovementReason.purchase,
    models.EntryType.retour: models.MovementReason.return_,
    models.EntryType.transfert: models.MovementReason.transfer,
    models.EntryType.ajustement: models.MovementReason.adjustment,
    models.EntryType.reparation: models.MovementReason.repair,
    models.EntryType.autre: models.MovementReason.other,
}


def _fetch_entry_row(conn: sqlite3.Connection, entry_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM stock_entries WHERE id = ?", (entry_id,)).fetchone()
    if row is None:
        raise NotFoundError("Entrée introuvable")
    return row


def _fetch_lines(conn: sqlite3.Connection, entry_id: int) -> list[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM stock_entry_items WHERE entry_id = ? ORDER BY id",
        (entry_id,),
    ).fetchall()


def _build_entry(conn: sqlite3.Connection, row: sqlite3.Row) -> models.StockEntry:
    return models.StockEntry(
        id=row["id"],
        entry_number=row["entry_number"],
        entry_type=row["entry_type"],
        status=row["status"],
        supplier_id=row["supplier_id"],
        invoice_number=row["invoice_number"],
        notes=row["notes"],
        total_amount=row["total_amount"],
        lines=[
            models.EntryLine(
                id=line["id"],
                article_id=line["article_id"],
                quantity=line["quantity"],
                unit_price=line["unit_price"],
            )
            for line in _fetch_lines(conn, row["id"])
        ],
        created_by=row["created_by"],
        created_at=row["created_at"],
        deleted_at=row["deleted_at"],
        deleted_by=row["deleted_by"],
        deleted_reason=row["deleted_reason"],
    )


def create_entry(payload: models.StockEntryCreate, actor: models.Actor) -> models.StockEntry:
    db.ensure_database_ready()
    reason = ENTRY_REASONS[payload.entry_type]
    now = db.utcnow()
    total = round_money(sum(line.quantity * line.unit_price for line in payload.lines))
    with db.get_stock_connection(write=True) as conn:
        if payload.supplier_id is not None:
            if conn.execute(
                "SELECT 1 FROM fournisseurs WHERE id = ?", (payload.supplier_id,)
            ).fetchone() is None:
                raise NotFoundError("Fournisseur introuvable")
        entry_number = db.next_document_number(
            conn, "stock_entries", "entry_number", f"ENT-{now:%Y%m%d}-"
        )
        cur = conn.execute(
            """
            INSERT INTO stock_entries (
                entry_number, entry_type, status, supplier_id, invoice_number,
                notes, total_amount, created_by, created_at
            )
            VALUES (?, ?, 'active', ?, ?, ?, ?, ?, ?)
            """,
            (
                entry_number,
                payload.entry_type.value,
                payload.supplier_id,
                payload.invoice_number,
                payload.notes,
                total,
                actor.username,
                now.isoformat(),
            ),
        )
        entry_id = cur.lastrowid
        movements = []
        for line in payload.lines:
            catalog.fetch_article(conn, line.article_id)
            conn.execute(
                """
                INSERT INTO stock_entry_items (entry_id, article_id, quantity, unit_price)
                VALUES (?, ?, ?, ?)
                """,
                (entry_id, line.article_id, line.quantity, line.unit_price),
            )
            movements.append(
                ledger.apply_stock_delta(
                    conn,
                    line.article_id,
                    line.quantity,
                    reason,
                    actor=actor.username,
                    entry_id=entry_id,
                    note=entry_number,
                )
            )
        created = _build_entry(conn, _fetch_entry_row(conn, entry_id))
    ledger.log_committed(movements)
    logger.info(
        "[ENTRY] created id=%s number=%s type=%s total=%.2f actor=%s",
        entry_id,
        entry_number,
        payload.entry_type.value,
        total,
        actor.username,
    )
    return created


def get_entry(entry_id: int) -> models.StockEntry:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        return _build_entry(conn, _fetch_entry_row(conn, entry_id))


def soft_delete_entry(entry_id: int, reason: str, actor: models.Actor) -> models.StockEntry:
    """Annule une entrée en retirant les quantités qu'elle avait ajoutées.

    Echoue en bloc (``InsufficientStockError``) si une partie du stock a
    déjà été consommée entre-temps.
    """

    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise ValidationError("Motif de suppression obligatoire")
    db.ensure_database_ready()
    now = db.utcnow()
    with db.get_stock_connection(write=True) as conn:
        row = _fetch_entry_row(conn, entry_id)
        cur = conn.execute(
            """
            UPDATE stock_entries
            SET status = 'deleted', deleted_at = ?, deleted_by = ?, deleted_reason = ?
            WHERE id = ? AND status = 'active'
            """,
            (now.isoformat(), actor.username, cleaned_reason, entry_id),
        )
        if cur.rowcount == 0:
            raise AlreadyDeletedError("Entrée déjà supprimée")
        movements = [
            ledger.apply_stock_delta(
                conn,
                line["article_id"],
                -line["quantity"],
                models.MovementReason.deletion_reversal,
                actor=actor.username,
                entry_id=entry_id,
                note=cleaned_reason,
            )
            for line in _fetch_lines(conn, entry_id)
        ]
        deleted = _build_entry(conn, _fetch_entry_row(conn, entry_id))
    ledger.log_committed(movements)
    logger.info(
        "[ENTRY] deleted id=%s number=%s actor=%s reason=%s",
        entry_id,
        row["entry_number"],
        actor.username,
        cleaned_reason,
    )
    return deleted
