"""Génération des commandes d'approvisionnement à partir des manques.

Les besoins (révision, alertes de stock bas, saisie directe) sont exprimés en
:class:`~magasin.core.models.ShortageDemand`. Pour chaque article en manque,
le fournisseur est résolu par une chaîne de priorité explicite
(``SUPPLIER_RESOLVERS``), puis les lignes sont regroupées par fournisseur.
"""
from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterable
from typing import Optional

from magasin.core import catalog, config, db, models, orders
from magasin.core.money import order_totals, round_money

logger = logging.getLogger(__name__)

SupplierResolver = Callable[
    [sqlite3.Connection, sqlite3.Row, list[sqlite3.Row]], Optional[sqlite3.Row]
]


def _load_links(conn: sqlite3.Connection, article_id: int) -> list[sqlite3.Row]:
    return conn.execute(
        """
        SELECT af.*, f.nom AS fournisseur_nom, f.actif AS fournisseur_actif
        FROM article_fournisseurs AS af
        JOIN fournisseurs AS f ON f.id = af.fournisseur_id
        WHERE af.article_id = ?
        ORDER BY af.id
        """,
        (article_id,),
    ).fetchall()


def _usable(link: sqlite3.Row) -> bool:
    return bool(link["actif"]) and bool(link["fournisseur_actif"])


def _principal_link(
    conn: sqlite3.Connection, article: sqlite3.Row, links: list[sqlite3.Row]
) -> sqlite3.Row | None:
    return next((link for link in links if link["est_principal"] and _usable(link)), None)


def _first_active_link(
    conn: sqlite3.Connection, article: sqlite3.Row, links: list[sqlite3.Row]
) -> sqlite3.Row | None:
    return next((link for link in links if _usable(link)), None)


def _legacy_link(
    conn: sqlite3.Connection, article: sqlite3.Row, links: list[sqlite3.Row]
) -> sqlite3.Row | None:
    """Ancien champ ``articles.fournisseur_id``, sans tarif ni minimum."""

    if article["fournisseur_id"] is None:
        return None
    return conn.execute(
        """
        SELECT id AS fournisseur_id, nom AS fournisseur_nom,
               NULL AS prix_fournisseur, NULL AS quantite_minimum
        FROM fournisseurs
        WHERE id = ? AND actif = 1
        """,
        (article["fournisseur_id"],),
    ).fetchone()


# Priorité de résolution, de la plus forte à la plus faible.
SUPPLIER_RESOLVERS: tuple[tuple[models.SupplierSource, SupplierResolver], ...] = (
    ("principal", _principal_link),
    ("first_active", _first_active_link),
    ("legacy", _legacy_link),
)


def _resolve(conn: sqlite3.Connection, article: sqlite3.Row) -> models.SupplierResolution | None:
    links = _load_links(conn, article["id"])
    for source, resolver in SUPPLIER_RESOLVERS:
        link = resolver(conn, article, links)
        if link is not None:
            return models.SupplierResolution(
                article_id=article["id"],
                supplier_id=link["fournisseur_id"],
                supplier_name=link["fournisseur_nom"],
                source=source,
                prix_fournisseur=link["prix_fournisseur"],
                quantite_minimum=link["quantite_minimum"],
            )
    return None


def resolve_supplier(article_id: int) -> models.SupplierResolution | None:
    """Fournisseur retenu pour l'article, ou ``None`` si aucun n'est connu."""

    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        return _resolve(conn, catalog.fetch_article(conn, article_id))


def aggregate_demands(demands: Iterable[models.ShortageDemand]) -> dict[int, int]:
    aggregated: dict[int, int] = {}
    for demand in demands:
        aggregated[demand.article_id] = aggregated.get(demand.article_id, 0) + demand.required
    return aggregated


def _build_plan(
    conn: sqlite3.Connection, demands: Iterable[models.ShortageDemand]
) -> models.ProcurementPlan:
    tax_rate = config.settings.DEFAULT_TAX_RATE
    groups: dict[int, models.OrderGroup] = {}
    unresolved: list[models.UnresolvedSupplier] = []

    for article_id, required in aggregate_demands(demands).items():
        article = catalog.fetch_article(conn, article_id)
        on_hand = article["stock"]
        missing = max(0, required - on_hand)
        if missing == 0:
            continue
        resolution = _resolve(conn, article)
        if resolution is None:
            unresolved.append(
                models.UnresolvedSupplier(
                    article_id=article_id,
                    reference=article["reference"],
                    designation=article["designation"],
                    missing=missing,
                )
            )
            continue

        quantity = max(missing, resolution.quantite_minimum or 0)
        unit_price = round_money(
            resolution.prix_fournisseur
            if resolution.prix_fournisseur is not None
            else article["prix_achat"] or 0.0
        )
        group = groups.get(resolution.supplier_id)
        if group is None:
            supplier = conn.execute(
                "SELECT * FROM fournisseurs WHERE id = ?", (resolution.supplier_id,)
            ).fetchone()
            group = models.OrderGroup(
                supplier_id=resolution.supplier_id,
                supplier_name=resolution.supplier_name,
                email=supplier["email"],
                telephone=supplier["telephone"],
                adresse=supplier["adresse"],
                tva_taux=tax_rate,
            )
            groups[resolution.supplier_id] = group
        group.lines.append(
            models.ProcurementLine(
                article_id=article_id,
                reference=article["reference"],
                designation=article["designation"],
                required=required,
                on_hand=on_hand,
                missing=missing,
                quantity=quantity,
                unit_price=unit_price,
                total_ligne=round_money(quantity * unit_price),
            )
        )

    for group in groups.values():
        group.total_ht, group.total_ttc = order_totals(
            [line.total_ligne for line in group.lines], group.tva_taux
        )
    ordered_groups = sorted(
        groups.values(), key=lambda item: (item.supplier_name.lower(), item.supplier_id)
    )
    return models.ProcurementPlan(groups=ordered_groups, unresolved=unresolved)


def build_order_groups(demands: Iterable[models.ShortageDemand]) -> models.ProcurementPlan:
    """Calcule les groupes de commande par fournisseur, sans rien enregistrer."""

    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        plan = _build_plan(conn, demands)
    logger.info(
        "[PROCUREMENT] plan groups=%s unresolved=%s",
        len(plan.groups),
        len(plan.unresolved),
    )
    return plan


def build_procurement_orders(
    demands: Iterable[models.ShortageDemand],
    actor: models.Actor,
    *,
    force_new: bool = False,
    source: str = "approvisionnement",
) -> models.ProcurementResult:
    """Transforme les manques en brouillons de commande, un par fournisseur.

    Chaque groupe passe par :func:`orders.place_lines`, qui complète le
    brouillon ouvert du fournisseur plutôt que d'en créer un doublon. Les
    articles sans fournisseur sont renvoyés dans ``unresolved``.
    """

    db.ensure_database_ready()
    with db.get_stock_connection(write=True) as conn:
        plan = _build_plan(conn, demands)
        order_ids: list[int] = []
        for group in plan.groups:
            order_id, merged = orders.place_lines(
                conn,
                group.supplier_name,
                [
                    models.OrderLineInput(
                        article_id=line.article_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        designation=line.designation,
                        reference=line.reference,
                    )
                    for line in group.lines
                ],
                actor=actor.username,
                force_new=force_new,
                source=source,
            )
            logger.info(
                "[PROCUREMENT] supplier=%s order=%s merged=%s lines=%s",
                group.supplier_name,
                order_id,
                merged,
                len(group.lines),
            )
            if order_id not in order_ids:
                order_ids.append(order_id)
        placed = orders.get_orders(conn, order_ids)
    if plan.unresolved:
        logger.warning(
            "[PROCUREMENT] %s article(s) sans fournisseur: %s",
            len(plan.unresolved),
            ", ".join(item.reference for item in plan.unresolved),
        )
    return models.ProcurementResult(orders=placed, unresolved=plan.unresolved)


def revision_demands(units: int, parts: Iterable[models.RevisionPart]) -> list[models.ShortageDemand]:
    """Besoin d'une campagne de révision: ``units`` x consommation par unité."""

    needed: dict[int, int] = {}
    for part in parts:
        needed[part.article_id] = needed.get(part.article_id, 0) + units * part.quantity_per_unit
    return [
        models.ShortageDemand(article_id=article_id, required=required)
        for article_id, required in needed.items()
    ]


def low_stock_demands() -> list[models.ShortageDemand]:
    """Articles en rupture ou au seuil minimum.

    Le besoin dépasse toujours le stock d'au moins une unité, de sorte qu'un
    article exactement au seuil produit lui aussi une ligne de commande.
    """

    db.ensure_database_ready()
    with db.get_stock_connection() as conn:
        rows = conn.execute(
            """
            SELECT id, stock, stock_min FROM articles
            WHERE stock = 0 OR stock <= stock_min
            ORDER BY id
            """
        ).fetchall()
    return [
        models.ShortageDemand(
            article_id=row["id"], required=max(row["stock_min"], row["stock"] + 1, 1)
        )
        for row in rows
    ]
