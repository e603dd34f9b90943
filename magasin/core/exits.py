"""Cycle de vie des sorties de stock (émission, retour, suppression)."""
from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone

from magasin.core import catalog, config, db, ledger, models
from magasin.core.errors import (
    AlreadyDeletedError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RENTAL_EXIT_TYPES = frozenset({models.ExitType.location_accessoire})

_RETURN_TARGETS: dict[models.ReturnOutcome, models.ReturnStatus] = {
    models.ReturnOutcome.ok: models.ReturnStatus.retourne_ok,
    models.ReturnOutcome.damaged: models.ReturnStatus.retourne_endommage,
    models.ReturnOutcome.not_returned: models.ReturnStatus.non_retourne,
}


def aggregate_lines(lines: list[models.ExitLineCreate]) -> dict[int, int]:
    aggregated: dict[int, int] = {}
    for line in lines:
        aggregated[line.article_id] = aggregated.get(line.article_id, 0) + line.quantity
    return aggregated


def can_delete_exit(
    exit_: models.StockExit, actor: models.Actor, now: datetime | None = None
) -> bool:
    """Suppression proposée aux rôles privilégiés, dans la fenêtre configurée."""

    if exit_.status is models.ExitStatus.deleted:
        return False
    if actor.role not in config.settings.PRIVILEGED_ROLES:
        return False
    reference = now or db.utcnow()
    created_at = exit_.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    window = timedelta(days=config.settings.EXIT_DELETION_WINDOW_DAYS)
    return reference - created_at <= window


def _fetch_exit_row(conn: sqlite3.Connection, exit_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM stock_exits WHERE id = ?", (exit_id,)).fetchone()
    if row is None:
        raise NotFoundError("Sortie introuvable")
    return row


def _fetch_lines(conn: sqlite3.Connection, exit_id: int) -> list[sqlite3.Row]:
    return conn.execute(
        """
        SELECT sei.id, sei.article_id, sei.quantity, a.designation
        FROM stock_exit_items AS sei
        LEFT JOIN articles AS a ON a.id = sei.article_id
        WHERE sei.exit_id = ?
        ORDER BY sei.id
        """,
        (exit_id,),
    ).fetchall()


def _build_exit(
    conn: sqlite3.Connection,
    row: sqlite3.Row,
    *,
    actor: models.Actor | None = None,
    today: date | None = None,
) -> models.StockExit:
    lines = [
        models.ExitLine(
            id=line["id"],
            article_id=line["article_id"],
            quantity=line["quantity"],
            designation=line["designation"],
        )
        for line in _fetch_lines(conn, row["id"])
    ]
    exit_ = models.StockExit(
        id=row["id"],
        exit_number=row["exit_number"],
        exit_type=row["exit_type"],
        status=row["status"],
        return_status=row["return_status"],
        state=models.ExitState.from_row(row["status"], row["return_status"]),
        lines=lines,
        client_name=row["client_name"],
        vehicule_id=row["vehicule_id"],
        department=row["department"],
        notes=row["notes"],
        caution_amount=row["caution_amount"],
        expected_return_date=row["expected_return_date"],
        actual_return_date=row["actual_return_date"],
        damage_description=row["damage_description"],
        reimbursement_amount=row["reimbursement_amount"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        deleted_at=row["deleted_at"],
        deleted_by=row["deleted_by"],
        deleted_reason=row["deleted_reason"],
    )
    if actor is not None:
        exit_.deletable = can_delete_exit(exit_, actor)
    reference_day = today or date.today()
    exit_.overdue = (
        exit_.state is models.ExitState.en_cours
        and exit_.expected_return_date is not None
        and exit_.expected_return_date < reference_day
    )
    return exit_


def create_exit(payload: models.StockExitCreate, actor: models.Actor) -> models.StockExit:
    """Crée une sortie et débite le stock de chaque ligne, tout ou rien."""

    db.ensure_database_ready()
    aggregated = aggregate_lines(payload.lines)
    now = db.utcnow()
    is_rental = payload.exit_type in RENTAL_EXIT_TYPES
    with db.get_stock_connection(write=True) as conn:
        exit_number = db.next_document_number(
            conn, "stock_exits", "exit_number", f"SOR-{now:%Y%m%d}-"
        )
        cur = conn.execute(
            """
            INSERT INTO stock_exits (
                exit_number, exit_type, status, return_status, client_name,
                vehicule_id, department, notes, caution_amount,
                expected_return_date, created_by, created_at
            )
            VALUES (?, ?, 'active', ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                exit_number,
                payload.exit_type.value,
                models.ReturnStatus.en_cours.value if is_rental else None,
                payload.client_name,
                payload.vehicule_id,
                payload.department,
                payload.notes,
                payload.caution_amount if is_rental else None,
                payload.expected_return_date.isoformat()
                if is_rental and payload.expected_return_date
                else None,
                actor.username,
                now.isoformat(),
            ),
        )
        exit_id = cur.lastrowid
        movements = []
        for article_id, quantity in aggregated.items():
            catalog.fetch_article(conn, article_id)
            conn.execute(
                "INSERT INTO stock_exit_items (exit_id, article_id, quantity) VALUES (?, ?, ?)",
                (exit_id, article_id, quantity),
            )
            movements.append(
                ledger.apply_stock_delta(
                    conn,
                    article_id,
                    -quantity,
                    models.MovementReason.issue,
                    actor=actor.username,
                    exit_id=exit_id,
                    note=exit_number,
                )
            )
        created = _build_exit(conn, _fetch_exit_row(conn, exit_id), actor=actor)
    ledger.log_committed(movements)
    logger.info(
        "[EXIT] created id=%s number=%s type=%s lines=%s actor=%s",
        exit_id,
        exit_number,
        payload.exit_type.value,
        len(aggregated),
        actor.username,
    )
    return created


def get_exit(exit_id: int, actor: models.Actor | None = None) -> models.StockExit:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        return _build_exit(conn, _fetch_exit_row(conn, exit_id), actor=actor)


def list_exits(
    *, include_deleted: bool = False, actor: models.Actor | None = None
) -> list[models.StockExit]:
    db.ensure_database_ready()
    query = "SELECT * FROM stock_exits"
    if not include_deleted:
        query += " WHERE status = 'active'"
    query += " ORDER BY created_at DESC, id DESC"
    with db.get_stock_connection() as conn:
        rows = conn.execute(query).fetchall()
        return [_build_exit(conn, row, actor=actor) for row in rows]


def list_active_rentals(
    *, actor: models.Actor | None = None, today: date | None = None
) -> list[models.StockExit]:
    """Locations en attente de retour, échéance la plus ancienne d'abord."""

    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        rows = conn.execute(
            """
            SELECT * FROM stock_exits
            WHERE status = 'active' AND return_status = ?
            ORDER BY expected_return_date IS NULL, expected_return_date, id
            """,
            (models.ReturnStatus.en_cours.value,),
        ).fetchall()
        return [_build_exit(conn, row, actor=actor, today=today) for row in rows]


def process_return(
    exit_id: int, payload: models.ReturnPayload, actor: models.Actor
) -> models.StockExit:
    """Clôt le retour d'une location; seul un retour ``ok`` restocke."""

    db.ensure_database_ready()
    target = _RETURN_TARGETS[payload.outcome]
    now = db.utcnow()
    with db.get_stock_connection(write=True) as conn:
        row = _fetch_exit_row(conn, exit_id)
        state = models.ExitState.from_row(row["status"], row["return_status"])
        if state is models.ExitState.deleted:
            raise InvalidTransitionError("Sortie supprimée: retour impossible")
        if state is models.ExitState.untracked:
            raise InvalidTransitionError("Cette sortie n'est pas une location")
        if state is not models.ExitState.en_cours:
            raise InvalidTransitionError("Retour déjà traité pour cette sortie")

        damage_description = None
        reimbursement = None
        if payload.outcome is models.ReturnOutcome.damaged:
            damage_description = (payload.damage_description or "").strip()
            if not damage_description:
                raise ValidationError("Description des dommages obligatoire")
            reimbursement = payload.reimbursement_amount
        returned_at = (
            None if payload.outcome is models.ReturnOutcome.not_returned else now.isoformat()
        )

        cur = conn.execute(
            """
            UPDATE stock_exits
            SET return_status = ?, actual_return_date = ?,
                damage_description = ?, reimbursement_amount = ?
            WHERE id = ? AND status = 'active' AND return_status = ?
            """,
            (
                target.value,
                returned_at,
                damage_description,
                reimbursement,
                exit_id,
                models.ReturnStatus.en_cours.value,
            ),
        )
        if cur.rowcount == 0:
            raise InvalidTransitionError("Retour déjà traité pour cette sortie")

        movements = []
        if payload.outcome is models.ReturnOutcome.ok:
            for line in _fetch_lines(conn, exit_id):
                movements.append(
                    ledger.apply_stock_delta(
                        conn,
                        line["article_id"],
                        line["quantity"],
                        models.MovementReason.return_,
                        actor=actor.username,
                        exit_id=exit_id,
                        note=f"Retour {row['exit_number']}",
                    )
                )
        updated = _build_exit(conn, _fetch_exit_row(conn, exit_id), actor=actor)
    ledger.log_committed(movements)
    logger.info(
        "[EXIT] return id=%s outcome=%s actor=%s",
        exit_id,
        payload.outcome.value,
        actor.username,
    )
    return updated


def soft_delete_exit(exit_id: int, reason: str, actor: models.Actor) -> models.StockExit:
    """Supprime logiquement une sortie et recrédite les quantités émises.

    Une sortie déjà retournée en bon état n'est pas recréditée une seconde
    fois. La suppression est définitive.
    """

    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise ValidationError("Motif de suppression obligatoire")
    db.ensure_database_ready()
    now = db.utcnow()
    with db.get_stock_connection(write=True) as conn:
        row = _fetch_exit_row(conn, exit_id)
        if row["status"] == models.ExitStatus.deleted.value:
            raise AlreadyDeletedError("Sortie déjà supprimée")
        cur = conn.execute(
            """
            UPDATE stock_exits
            SET status = 'deleted', deleted_at = ?, deleted_by = ?, deleted_reason = ?
            WHERE id = ? AND status = 'active'
            """,
            (now.isoformat(), actor.username, cleaned_reason, exit_id),
        )
        if cur.rowcount == 0:
            raise AlreadyDeletedError("Sortie déjà supprimée")
        restocked = row["return_status"] != models.ReturnStatus.retourne_ok.value
        movements = []
        if restocked:
            for line in _fetch_lines(conn, exit_id):
                movements.append(
                    ledger.apply_stock_delta(
                        conn,
                        line["article_id"],
                        line["quantity"],
                        models.MovementReason.deletion_reversal,
                        actor=actor.username,
                        exit_id=exit_id,
                        note=cleaned_reason,
                    )
                )
        deleted = _build_exit(conn, _fetch_exit_row(conn, exit_id), actor=actor)
    ledger.log_committed(movements)
    logger.info(
        "[EXIT] deleted id=%s restocked=%s actor=%s reason=%s",
        exit_id,
        restocked,
        actor.username,
        cleaned_reason,
    )
    return deleted
