"""Référentiel articles et fournisseurs (lecture et création)."""
from __future__ import annotations

import logging
import sqlite3

from magasin.core import db, ledger, models
from magasin.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _build_supplier(row: sqlite3.Row) -> models.Supplier:
    return models.Supplier(
        id=row["id"],
        nom=row["nom"],
        email=row["email"],
        telephone=row["telephone"],
        adresse=row["adresse"],
        actif=bool(row["actif"]),
    )


def _build_article(row: sqlite3.Row) -> models.Article:
    return models.Article(
        id=row["id"],
        reference=row["reference"],
        designation=row["designation"],
        categorie=row["categorie"],
        marque=row["marque"],
        stock=row["stock"],
        stock_min=row["stock_min"],
        stock_max=row["stock_max"],
        prix_achat=row["prix_achat"],
        fournisseur_id=row["fournisseur_id"],
    )


def _build_link(row: sqlite3.Row) -> models.SupplierLink:
    return models.SupplierLink(
        id=row["id"],
        article_id=row["article_id"],
        fournisseur_id=row["fournisseur_id"],
        prix_fournisseur=row["prix_fournisseur"],
        est_principal=bool(row["est_principal"]),
        actif=bool(row["actif"]),
        quantite_minimum=row["quantite_minimum"],
        reference_fournisseur=row["reference_fournisseur"],
    )


def fetch_article(conn: sqlite3.Connection, article_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"Article #{article_id} introuvable")
    return row


def _ensure_supplier(conn: sqlite3.Connection, supplier_id: int) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM fournisseurs WHERE id = ?", (supplier_id,)).fetchone()
    if row is None:
        raise NotFoundError("Fournisseur introuvable")
    return row


def create_supplier(payload: models.SupplierCreate) -> models.Supplier:
    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        try:
            cur = conn.execute(
                """
                INSERT INTO fournisseurs (nom, email, telephone, adresse, actif)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    payload.nom.strip(),
                    payload.email,
                    payload.telephone,
                    payload.adresse,
                    int(payload.actif),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("Un fournisseur porte déjà ce nom") from exc
        row = _ensure_supplier(conn, cur.lastrowid)
    logger.info("[CATALOG] supplier created id=%s nom=%s", row["id"], row["nom"])
    return _build_supplier(row)


def get_supplier(supplier_id: int) -> models.Supplier:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        return _build_supplier(_ensure_supplier(conn, supplier_id))


def list_suppliers() -> list[models.Supplier]:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        rows = conn.execute("SELECT * FROM fournisseurs ORDER BY nom COLLATE NOCASE").fetchall()
        return [_build_supplier(row) for row in rows]


def create_article(payload: models.ArticleCreate, *, actor: str) -> models.Article:
    """Crée un article; un stock initial passe par le registre."""

    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        if payload.fournisseur_id is not None:
            _ensure_supplier(conn, payload.fournisseur_id)
        try:
            cur = conn.execute(
                """
                INSERT INTO articles (
                    reference, designation, categorie, marque, stock,
                    stock_min, stock_max, prix_achat, fournisseur_id
                )
                VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (
                    payload.reference.strip(),
                    payload.designation.strip(),
                    payload.categorie,
                    payload.marque,
                    payload.stock_min,
                    payload.stock_max,
                    payload.prix_achat,
                    payload.fournisseur_id,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("Référence article déjà utilisée") from exc
        article_id = cur.lastrowid
        movements = []
        if payload.stock > 0:
            movements.append(
                ledger.apply_stock_delta(
                    conn,
                    article_id,
                    payload.stock,
                    models.MovementReason.adjustment,
                    actor=actor,
                    note="Stock initial",
                )
            )
        row = fetch_article(conn, article_id)
    ledger.log_committed(movements)
    logger.info(
        "[CATALOG] article created id=%s reference=%s stock=%s",
        article_id,
        row["reference"],
        row["stock"],
    )
    return _build_article(row)


def get_article(article_id: int) -> models.Article:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        return _build_article(fetch_article(conn, article_id))


def list_articles(search: str | None = None) -> list[models.Article]:
    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        if search:
            pattern = f"%{search.strip()}%"
            rows = conn.execute(
                """
                SELECT * FROM articles
                WHERE reference LIKE ? OR designation LIKE ?
                ORDER BY designation COLLATE NOCASE
                """,
                (pattern, pattern),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM articles ORDER BY designation COLLATE NOCASE"
            ).fetchall()
        return [_build_article(row) for row in rows]


def link_supplier(article_id: int, payload: models.SupplierLinkCreate) -> models.SupplierLink:
    """Associe un fournisseur à un article; un seul principal par article."""

    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        fetch_article(conn, article_id)
        _ensure_supplier(conn, payload.fournisseur_id)
        if payload.est_principal:
            conn.execute(
                "UPDATE article_fournisseurs SET est_principal = 0 WHERE article_id = ?",
                (article_id,),
            )
        try:
            cur = conn.execute(
                """
                INSERT INTO article_fournisseurs (
                    article_id, fournisseur_id, prix_fournisseur, est_principal,
                    actif, quantite_minimum, reference_fournisseur
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    article_id,
                    payload.fournisseur_id,
                    payload.prix_fournisseur,
                    int(payload.est_principal),
                    int(payload.actif),
                    payload.quantite_minimum,
                    payload.reference_fournisseur,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("Fournisseur déjà associé à cet article") from exc
        row = conn.execute(
            "SELECT * FROM article_fournisseurs WHERE id = ?", (cur.lastrowid,)
        ).fetchone()
    logger.info(
        "[CATALOG] supplier link article=%s fournisseur=%s principal=%s",
        article_id,
        payload.fournisseur_id,
        payload.est_principal,
    )
    return _build_link(row)


def list_supplier_links(conn: sqlite3.Connection, article_id: int) -> list[models.SupplierLink]:
    rows = conn.execute(
        "SELECT * FROM article_fournisseurs WHERE article_id = ? ORDER BY id",
        (article_id,),
    ).fetchall()
    return [_build_link(row) for row in rows]
