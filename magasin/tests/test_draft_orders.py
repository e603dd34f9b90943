from __future__ import annotations

import re
from datetime import datetime, timezone

from magasin.core import catalog, models, orders


def _draft(supplier: str, *lines: tuple[int, int], force_new: bool = False, **fields):
    return models.DraftMergeRequest(
        supplier_name=supplier,
        lines=[
            models.OrderLineInput(article_id=article_id, quantity=quantity)
            for article_id, quantity in lines
        ],
        force_new=force_new,
        **fields,
    )


def test_non_overlapping_articles_share_one_draft(make_article, make_supplier, magasinier) -> None:
    make_supplier("Pneus Nord", email="contact@pneus.example", telephone="0102030405")
    tyres = make_article(prix_achat=80.0)
    valves = make_article(prix_achat=1.5)

    first = orders.merge_or_create_draft(_draft("Pneus Nord", (tyres.id, 4)), magasinier)
    second = orders.merge_or_create_draft(_draft("Pneus Nord", (valves.id, 10)), magasinier)

    assert first.id == second.id
    assert len(orders.list_orders()) == 1
    assert [(line.article_id, line.quantite_commandee) for line in second.lines] == [
        (tyres.id, 4),
        (valves.id, 10),
    ]
    assert second.total_ht == 335.0
    assert second.total_ttc == 402.0
    assert second.email_fournisseur == "contact@pneus.example"
    assert second.status is models.OrderStatus.brouillon


def test_same_article_coalesces_quantity(make_article, magasinier) -> None:
    article = make_article(prix_achat=2.35)

    orders.merge_or_create_draft(_draft("Visserie", (article.id, 3)), magasinier)
    merged = orders.merge_or_create_draft(
        _draft("Visserie", (article.id, 2), (article.id, 1)), magasinier
    )

    assert len(merged.lines) == 1
    line = merged.lines[0]
    assert line.quantite_commandee == 6
    assert line.total_ligne == 14.1
    assert merged.total_ht == 14.1
    assert merged.total_ttc == 16.92


def test_supplier_match_ignores_case_and_spaces(make_article, magasinier) -> None:
    article = make_article(prix_achat=1.0)

    first = orders.merge_or_create_draft(_draft("Garage Central", (article.id, 1)), magasinier)
    second = orders.merge_or_create_draft(_draft("  garage central ", (article.id, 1)), magasinier)

    assert first.id == second.id
    assert second.fournisseur == "Garage Central"


def test_force_new_creates_a_fresh_draft(make_article, magasinier) -> None:
    article = make_article(prix_achat=1.0)

    first = orders.merge_or_create_draft(_draft("Huiles", (article.id, 1)), magasinier)
    fresh = orders.merge_or_create_draft(
        _draft("Huiles", (article.id, 1), force_new=True), magasinier
    )
    latest = orders.merge_or_create_draft(_draft("Huiles", (article.id, 5)), magasinier)

    year = datetime.now(timezone.utc).year
    assert fresh.id != first.id
    assert re.fullmatch(rf"CMD-{year}-0001", first.numero_commande)
    assert re.fullmatch(rf"CMD-{year}-0002", fresh.numero_commande)
    assert latest.id == fresh.id
    assert latest.lines[0].quantite_commandee == 6


def test_sent_orders_are_not_merged(make_article, magasinier) -> None:
    article = make_article(prix_achat=1.0)
    sent = orders.merge_or_create_draft(_draft("Outillage", (article.id, 1)), magasinier)
    orders.update_order_status(sent.id, models.OrderStatus.envoye, magasinier)

    draft = orders.merge_or_create_draft(_draft("Outillage", (article.id, 2)), magasinier)

    assert draft.id != sent.id
    assert orders.get_order(sent.id).lines[0].quantite_commandee == 1


def test_unit_price_prefers_supplier_price_and_is_frozen(make_article, make_supplier, magasinier) -> None:
    supplier = make_supplier("Filtres SA")
    article = make_article(prix_achat=9.0)
    catalog.link_supplier(
        article.id, models.SupplierLinkCreate(fournisseur_id=supplier.id, prix_fournisseur=7.25)
    )
    explicit = make_article(prix_achat=9.0)

    order = orders.merge_or_create_draft(
        models.DraftMergeRequest(
            supplier_name="Filtres SA",
            lines=[
                models.OrderLineInput(article_id=article.id, quantity=2),
                models.OrderLineInput(article_id=explicit.id, quantity=1, unit_price=5.0),
            ],
        ),
        magasinier,
    )
    merged = orders.merge_or_create_draft(
        models.DraftMergeRequest(
            supplier_name="Filtres SA",
            lines=[models.OrderLineInput(article_id=article.id, quantity=1, unit_price=99.0)],
        ),
        magasinier,
    )

    assert order.fournisseur_id == supplier.id
    assert [line.prix_unitaire for line in order.lines] == [7.25, 5.0]
    assert merged.lines[0].prix_unitaire == 7.25
    assert merged.lines[0].total_ligne == 21.75
