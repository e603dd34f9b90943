"""Bons de commande fournisseurs: brouillons, transitions, réception."""
from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

from magasin.core import catalog, config, db, ledger, models
from magasin.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from magasin.core.money import order_totals, round_money

logger = logging.getLogger(__name__)

Status = models.OrderStatus

ORDER_TRANSITIONS: dict[models.OrderStatus, frozenset[models.OrderStatus]] = {
    Status.brouillon: frozenset({Status.envoye, Status.annule}),
    Status.envoye: frozenset({Status.confirme, Status.annule}),
    Status.confirme: frozenset({Status.annule}),
    Status.recu_partiel: frozenset({Status.annule}),
    Status.recu_complet: frozenset(),
    Status.annule: frozenset(),
}
RECEPTION_STATUSES = frozenset({Status.recu_partiel, Status.recu_complet})
RECEIVABLE_STATUSES = frozenset({Status.envoye, Status.confirme, Status.recu_partiel})


def _fetch_order_row(conn: sqlite3.Connection, order_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM commandes WHERE id = ?", (order_id,)).fetchone()
    if row is None:
        raise NotFoundError("Bon de commande introuvable")
    return row


def _fetch_lines(conn: sqlite3.Connection, order_id: int) -> list[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM commande_items WHERE commande_id = ? ORDER BY id",
        (order_id,),
    ).fetchall()


def _build_order(conn: sqlite3.Connection, row: sqlite3.Row) -> models.PurchaseOrder:
    lines = [
        models.OrderLine(
            id=line["id"],
            commande_id=line["commande_id"],
            article_id=line["article_id"],
            designation=line["designation"],
            reference=line["reference"],
            quantite_commandee=line["quantite_commandee"],
            quantite_recue=line["quantite_recue"],
            prix_unitaire=line["prix_unitaire"],
            total_ligne=line["total_ligne"],
        )
        for line in _fetch_lines(conn, row["id"])
    ]
    return models.PurchaseOrder(
        id=row["id"],
        numero_commande=row["numero_commande"],
        fournisseur=row["fournisseur"],
        fournisseur_id=row["fournisseur_id"],
        email_fournisseur=row["email_fournisseur"],
        telephone_fournisseur=row["telephone_fournisseur"],
        adresse_fournisseur=row["adresse_fournisseur"],
        status=row["status"],
        tva_taux=row["tva_taux"],
        total_ht=row["total_ht"],
        total_ttc=row["total_ttc"],
        notes=row["notes"],
        source=row["source"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        date_envoi=row["date_envoi"],
        date_reception_reelle=row["date_reception_reelle"],
        lines=lines,
    )


def recompute_totals(conn: sqlite3.Connection, order_id: int) -> tuple[float, float]:
    """Recalcule ``total_ht`` et ``total_ttc`` à partir des lignes."""

    header = _fetch_order_row(conn, order_id)
    line_totals = [line["total_ligne"] for line in _fetch_lines(conn, order_id)]
    total_ht, total_ttc = order_totals(line_totals, header["tva_taux"])
    conn.execute(
        "UPDATE commandes SET total_ht = ?, total_ttc = ? WHERE id = ?",
        (total_ht, total_ttc, order_id),
    )
    return total_ht, total_ttc


def find_open_draft(conn: sqlite3.Connection, supplier_name: str) -> sqlite3.Row | None:
    """Brouillon le plus récent du fournisseur (nom insensible à la casse)."""

    return conn.execute(
        """
        SELECT * FROM commandes
        WHERE status = ? AND fournisseur = ? COLLATE NOCASE
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        (Status.brouillon.value, supplier_name.strip()),
    ).fetchone()


def _find_supplier(conn: sqlite3.Connection, supplier_name: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM fournisseurs WHERE nom = ? COLLATE NOCASE",
        (supplier_name.strip(),),
    ).fetchone()


def _default_unit_price(
    conn: sqlite3.Connection, article: sqlite3.Row, supplier_id: int | None
) -> float:
    if supplier_id is not None:
        link = conn.execute(
            """
            SELECT prix_fournisseur FROM article_fournisseurs
            WHERE article_id = ? AND fournisseur_id = ? AND actif = 1
            """,
            (article["id"], supplier_id),
        ).fetchone()
        if link is not None and link["prix_fournisseur"] is not None:
            return link["prix_fournisseur"]
    return article["prix_achat"] or 0.0


def _create_draft_header(
    conn: sqlite3.Connection,
    supplier_name: str,
    *,
    actor: str,
    notes: str | None,
    source: str | None,
) -> int:
    now = db.utcnow()
    supplier = _find_supplier(conn, supplier_name)
    numero = db.next_document_number(conn, "commandes", "numero_commande", f"CMD-{now:%Y}-")
    cur = conn.execute(
        """
        INSERT INTO commandes (
            numero_commande, fournisseur, fournisseur_id, email_fournisseur,
            telephone_fournisseur, adresse_fournisseur, status, tva_taux,
            notes, source, created_by, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            numero,
            supplier["nom"] if supplier is not None else supplier_name.strip(),
            supplier["id"] if supplier is not None else None,
            supplier["email"] if supplier is not None else None,
            supplier["telephone"] if supplier is not None else None,
            supplier["adresse"] if supplier is not None else None,
            Status.brouillon.value,
            config.settings.DEFAULT_TAX_RATE,
            notes,
            source,
            actor,
            now.isoformat(),
        ),
    )
    return cur.lastrowid


def _add_or_coalesce_line(
    conn: sqlite3.Connection, order: sqlite3.Row, line: models.OrderLineInput
) -> None:
    existing = conn.execute(
        "SELECT * FROM commande_items WHERE commande_id = ? AND article_id = ?",
        (order["id"], line.article_id),
    ).fetchone()
    if existing is not None:
        quantity = existing["quantite_commandee"] + line.quantity
        conn.execute(
            "UPDATE commande_items SET quantite_commandee = ?, total_ligne = ? WHERE id = ?",
            (quantity, round_money(quantity * existing["prix_unitaire"]), existing["id"]),
        )
        return

    article = catalog.fetch_article(conn, line.article_id)
    unit_price = line.unit_price
    if unit_price is None:
        unit_price = _default_unit_price(conn, article, order["fournisseur_id"])
    unit_price = round_money(unit_price)
    conn.execute(
        """
        INSERT INTO commande_items (
            commande_id, article_id, designation, reference,
            quantite_commandee, quantite_recue, prix_unitaire, total_ligne
        )
        VALUES (?, ?, ?, ?, ?, 0, ?, ?)
        """,
        (
            order["id"],
            line.article_id,
            line.designation or article["designation"],
            line.reference or article["reference"],
            line.quantity,
            unit_price,
            round_money(line.quantity * unit_price),
        ),
    )


def place_lines(
    conn: sqlite3.Connection,
    supplier_name: str,
    lines: Iterable[models.OrderLineInput],
    *,
    actor: str,
    force_new: bool = False,
    notes: str | None = None,
    source: str | None = None,
) -> tuple[int, bool]:
    """Ajoute les lignes au brouillon ouvert du fournisseur ou en crée un.

    Retourne ``(order_id, merged)``. Tous les chemins de création de
    commande passent par cette fonction.
    """

    draft = None if force_new else find_open_draft(conn, supplier_name)
    merged = draft is not None
    if draft is None:
        order_id = _create_draft_header(
            conn, supplier_name, actor=actor, notes=notes, source=source
        )
        draft = _fetch_order_row(conn, order_id)
    for line in lines:
        _add_or_coalesce_line(conn, draft, line)
    recompute_totals(conn, draft["id"])
    return draft["id"], merged


def merge_or_create_draft(
    request: models.DraftMergeRequest, actor: models.Actor
) -> models.PurchaseOrder:
    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        order_id, merged = place_lines(
            conn,
            request.supplier_name,
            request.lines,
            actor=actor.username,
            force_new=request.force_new,
            notes=request.notes,
            source=request.source,
        )
        order = _build_order(conn, _fetch_order_row(conn, order_id))
    logger.info(
        "[ORDER] draft %s id=%s numero=%s fournisseur=%s lines=%s actor=%s",
        "merged" if merged else "created",
        order.id,
        order.numero_commande,
        order.fournisseur,
        len(request.lines),
        actor.username,
    )
    return order


def get_order(order_id: int) -> models.PurchaseOrder:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        return _build_order(conn, _fetch_order_row(conn, order_id))


def get_orders(conn: sqlite3.Connection, order_ids: Iterable[int]) -> list[models.PurchaseOrder]:
    return [_build_order(conn, _fetch_order_row(conn, order_id)) for order_id in order_ids]


def list_orders(
    status: models.OrderStatus | None = None, supplier_name: str | None = None
) -> list[models.PurchaseOrder]:
    db.ensure_database_ready()
    clauses: list[str] = []
    params: list[object] = []
    if status is not None:
        clauses.append("status = ?")
        params.append(status.value)
    if supplier_name:
        clauses.append("fournisseur = ? COLLATE NOCASE")
        params.append(supplier_name.strip())
    query = "SELECT * FROM commandes"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY created_at DESC, id DESC"
    with db.get_stock_connection() as conn:
        rows = conn.execute(query, params).fetchall()
        return [_build_order(conn, row) for row in rows]


def update_order_status(
    order_id: int, target: models.OrderStatus, actor: models.Actor
) -> models.PurchaseOrder:
    if target in RECEPTION_STATUSES:
        raise InvalidTransitionError("Les statuts de réception sont fixés par la réception")
    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        row = _fetch_order_row(conn, order_id)
        current = Status(row["status"])
        if target not in ORDER_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Transition {current.value} -> {target.value} non autorisée"
            )
        if target is Status.envoye and not _fetch_lines(conn, order_id):
            raise ValidationError("Impossible d'envoyer une commande sans ligne")
        date_envoi = db.utcnow_iso() if target is Status.envoye else row["date_envoi"]
        cur = conn.execute(
            "UPDATE commandes SET status = ?, date_envoi = ? WHERE id = ? AND status = ?",
            (target.value, date_envoi, order_id, current.value),
        )
        if cur.rowcount == 0:
            raise InvalidTransitionError("Commande modifiée entre-temps")
        order = _build_order(conn, _fetch_order_row(conn, order_id))
    logger.info(
        "[ORDER] status id=%s %s -> %s actor=%s",
        order_id,
        current.value,
        target.value,
        actor.username,
    )
    return order


def _fetch_draft_line(
    conn: sqlite3.Connection, order_id: int, line_id: int
) -> sqlite3.Row:
    row = _fetch_order_row(conn, order_id)
    if row["status"] != Status.brouillon.value:
        raise InvalidTransitionError("Seules les commandes en brouillon sont modifiables")
    line = conn.execute(
        "SELECT * FROM commande_items WHERE id = ? AND commande_id = ?",
        (line_id, order_id),
    ).fetchone()
    if line is None:
        raise NotFoundError("Ligne de commande introuvable")
    return line


def update_order_line(
    order_id: int, line_id: int, payload: models.OrderLineUpdate
) -> models.PurchaseOrder:
    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        line = _fetch_draft_line(conn, order_id, line_id)
        quantity = payload.quantity if payload.quantity is not None else line["quantite_commandee"]
        unit_price = (
            round_money(payload.unit_price)
            if payload.unit_price is not None
            else line["prix_unitaire"]
        )
        conn.execute(
            """
            UPDATE commande_items
            SET quantite_commandee = ?, prix_unitaire = ?, total_ligne = ?
            WHERE id = ?
            """,
            (quantity, unit_price, round_money(quantity * unit_price), line_id),
        )
        recompute_totals(conn, order_id)
        order = _build_order(conn, _fetch_order_row(conn, order_id))
    logger.info("[ORDER] line updated order=%s line=%s qty=%s", order_id, line_id, quantity)
    return order


def remove_order_line(order_id: int, line_id: int) -> models.PurchaseOrder:
    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        _fetch_draft_line(conn, order_id, line_id)
        conn.execute("DELETE FROM commande_items WHERE id = ?", (line_id,))
        recompute_totals(conn, order_id)
        order = _build_order(conn, _fetch_order_row(conn, order_id))
    logger.info("[ORDER] line removed order=%s line=%s", order_id, line_id)
    return order


def receive_order(
    order_id: int, payload: models.ReceptionPayload, actor: models.Actor
) -> models.PurchaseOrder:
    """Enregistre une réception (partielle ou complète) et crédite le stock."""

    increments: dict[int, int] = {}
    for line in payload.lines:
        if line.quantity <= 0:
            continue
        increments[line.line_id] = increments.get(line.line_id, 0) + line.quantity
    if not increments:
        raise ValidationError("Aucune ligne de réception valide")

    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        row = _fetch_order_row(conn, order_id)
        current = Status(row["status"])
        if current not in RECEIVABLE_STATUSES:
            raise InvalidTransitionError(
                f"Réception impossible pour une commande au statut {current.value}"
            )
        movements = []
        for line_id, increment in increments.items():
            line = conn.execute(
                "SELECT * FROM commande_items WHERE id = ? AND commande_id = ?",
                (line_id, order_id),
            ).fetchone()
            if line is None:
                raise NotFoundError("Ligne de commande introuvable")
            remaining = line["quantite_commandee"] - line["quantite_recue"]
            accepted = min(increment, remaining)
            if accepted < increment:
                logger.warning(
                    "[ORDER] reception clamped order=%s line=%s requested=%s accepted=%s",
                    order_id,
                    line_id,
                    increment,
                    accepted,
                )
            if accepted <= 0:
                continue
            conn.execute(
                "UPDATE commande_items SET quantite_recue = quantite_recue + ? WHERE id = ?",
                (accepted, line_id),
            )
            if line["article_id"] is not None:
                movements.append(
                    ledger.apply_stock_delta(
                        conn,
                        line["article_id"],
                        accepted,
                        models.MovementReason.reception,
                        actor=actor.username,
                        order_id=order_id,
                        note=row["numero_commande"],
                    )
                )

        lines = _fetch_lines(conn, order_id)
        if all(item["quantite_recue"] >= item["quantite_commandee"] for item in lines):
            conn.execute(
                "UPDATE commandes SET status = ?, date_reception_reelle = ? WHERE id = ?",
                (Status.recu_complet.value, db.utcnow_iso(), order_id),
            )
        elif any(item["quantite_recue"] > 0 for item in lines):
            conn.execute(
                "UPDATE commandes SET status = ? WHERE id = ?",
                (Status.recu_partiel.value, order_id),
            )
        order = _build_order(conn, _fetch_order_row(conn, order_id))
    ledger.log_committed(movements)
    logger.info(
        "[ORDER] reception id=%s status=%s actor=%s",
        order_id,
        order.status.value,
        actor.username,
    )
    return order
