from __future__ import annotations

from magasin.core import catalog, models, orders, procurement


def _link(article_id: int, supplier_id: int, **fields) -> models.SupplierLink:
    return catalog.link_supplier(
        article_id, models.SupplierLinkCreate(fournisseur_id=supplier_id, **fields)
    )


def _demand(article_id: int, required: int) -> models.ShortageDemand:
    return models.ShortageDemand(article_id=article_id, required=required)


def test_revision_shortage_groups_under_principal_supplier(make_article, make_supplier) -> None:
    s1 = make_supplier("S1", email="s1@example.com")
    other = make_supplier("Autre")
    article = make_article(stock=12, prix_achat=6.0)
    _link(article.id, other.id, prix_fournisseur=3.9)
    _link(article.id, s1.id, prix_fournisseur=4.5, est_principal=True)

    plan = procurement.build_order_groups([_demand(article.id, 20)])

    assert plan.unresolved == []
    assert len(plan.groups) == 1
    group = plan.groups[0]
    assert group.supplier_id == s1.id
    assert group.email == "s1@example.com"
    assert group.status is models.OrderStatus.brouillon
    line = group.lines[0]
    assert (line.missing, line.quantity, line.unit_price, line.total_ligne) == (8, 8, 4.5, 36.0)
    assert group.total_ht == 36.0
    assert group.total_ttc == 43.2


def test_resolution_precedence(make_article, make_supplier) -> None:
    first = make_supplier("Premier")
    second = make_supplier("Second")
    dormant = make_supplier("Dormant", actif=False)
    legacy = make_supplier("Historique")

    with_principal = make_article()
    _link(with_principal.id, first.id)
    _link(with_principal.id, second.id, est_principal=True)

    insertion_order = make_article()
    _link(insertion_order.id, dormant.id)
    _link(insertion_order.id, second.id, actif=False)
    _link(insertion_order.id, first.id)

    legacy_only = make_article(fournisseur_id=legacy.id)
    orphan = make_article()

    resolved = procurement.resolve_supplier(with_principal.id)
    assert (resolved.supplier_id, resolved.source) == (second.id, "principal")
    resolved = procurement.resolve_supplier(insertion_order.id)
    assert (resolved.supplier_id, resolved.source) == (first.id, "first_active")
    resolved = procurement.resolve_supplier(legacy_only.id)
    assert (resolved.supplier_id, resolved.source) == (legacy.id, "legacy")
    assert procurement.resolve_supplier(orphan.id) is None


def test_inactive_principal_falls_back_to_first_active(make_article, make_supplier) -> None:
    first = make_supplier("Premier")
    second = make_supplier("Second")
    article = make_article()
    _link(article.id, first.id, est_principal=True, actif=False)
    _link(article.id, second.id)

    resolved = procurement.resolve_supplier(article.id)

    assert (resolved.supplier_id, resolved.source) == (second.id, "first_active")


def test_resolution_follows_configured_chain(make_article, make_supplier, monkeypatch) -> None:
    linked = make_supplier("Lié")
    legacy = make_supplier("Historique")
    article = make_article(fournisseur_id=legacy.id)
    _link(article.id, linked.id, est_principal=True)

    assert [source for source, _ in procurement.SUPPLIER_RESOLVERS] == [
        "principal",
        "first_active",
        "legacy",
    ]
    assert procurement.resolve_supplier(article.id).source == "principal"

    monkeypatch.setattr(
        procurement,
        "SUPPLIER_RESOLVERS",
        tuple(item for item in procurement.SUPPLIER_RESOLVERS if item[0] == "legacy"),
    )
    resolved = procurement.resolve_supplier(article.id)

    assert (resolved.supplier_id, resolved.source) == (legacy.id, "legacy")
    assert resolved.prix_fournisseur is None


def test_no_lines_when_stock_covers_demand(make_article, make_supplier, magasinier) -> None:
    supplier = make_supplier("Stockeur")
    article = make_article(stock=10)
    _link(article.id, supplier.id)

    plan = procurement.build_order_groups([_demand(article.id, 10), _demand(article.id, 0)])
    result = procurement.build_procurement_orders([_demand(article.id, 4)], magasinier)

    assert plan.groups == [] and plan.unresolved == []
    assert result.orders == [] and result.unresolved == []
    assert orders.list_orders() == []


def test_unresolved_articles_are_reported_not_raised(make_article, make_supplier, magasinier) -> None:
    supplier = make_supplier("Garage")
    known = make_article(prix_achat=2.0)
    _link(known.id, supplier.id)
    orphan = make_article(reference="ORPH-1", designation="Joint orphelin")

    result = procurement.build_procurement_orders(
        [_demand(known.id, 3), _demand(orphan.id, 5)], magasinier
    )

    assert len(result.orders) == 1
    assert result.orders[0].lines[0].prix_unitaire == 2.0
    assert [(u.code, u.article_id, u.reference, u.missing) for u in result.unresolved] == [
        ("UNRESOLVED_SUPPLIER", orphan.id, "ORPH-1", 5)
    ]


def test_lines_split_per_supplier_and_minimum_quantity(make_article, make_supplier) -> None:
    alpha = make_supplier("Alpha")
    beta = make_supplier("Beta")
    filters = make_article(stock=1, prix_achat=3.0)
    bulbs = make_article(stock=0, prix_achat=1.25)
    oil = make_article(stock=2, prix_achat=9.0)
    _link(filters.id, alpha.id, quantite_minimum=10)
    _link(bulbs.id, beta.id)
    _link(oil.id, alpha.id, prix_fournisseur=8.0)

    plan = procurement.build_order_groups(
        [_demand(filters.id, 4), _demand(bulbs.id, 6), _demand(oil.id, 5), _demand(bulbs.id, 2)]
    )

    assert [group.supplier_name for group in plan.groups] == ["Alpha", "Beta"]
    alpha_lines = {line.article_id: line for line in plan.groups[0].lines}
    assert alpha_lines[filters.id].missing == 3
    assert alpha_lines[filters.id].quantity == 10
    assert alpha_lines[oil.id].quantity == 3
    assert alpha_lines[oil.id].unit_price == 8.0
    assert plan.groups[0].total_ht == 54.0
    beta_line = plan.groups[1].lines[0]
    assert (beta_line.required, beta_line.quantity, beta_line.total_ligne) == (8, 8, 10.0)
    assert all(line.missing > 0 for group in plan.groups for line in group.lines)


def test_repeated_runs_produce_identical_plans(make_article, make_supplier) -> None:
    first = make_supplier("Un")
    second = make_supplier("Deux")
    article = make_article()
    _link(article.id, first.id)
    _link(article.id, second.id)

    plans = [procurement.build_order_groups([_demand(article.id, 3)]) for _ in range(3)]

    assert plans[0] == plans[1] == plans[2]
    assert plans[0].groups[0].supplier_id == first.id


def test_procurement_runs_merge_into_open_draft(make_article, make_supplier, magasinier) -> None:
    supplier = make_supplier("Fourni")
    article = make_article(prix_achat=2.0)
    _link(article.id, supplier.id)

    first = procurement.build_procurement_orders([_demand(article.id, 3)], magasinier)
    second = procurement.build_procurement_orders([_demand(article.id, 2)], magasinier)
    forced = procurement.build_procurement_orders(
        [_demand(article.id, 1)], magasinier, force_new=True
    )

    assert first.orders[0].id == second.orders[0].id
    assert [line.quantite_commandee for line in second.orders[0].lines] == [5]
    assert second.orders[0].total_ht == 10.0
    assert forced.orders[0].id != first.orders[0].id
    assert len(orders.list_orders(status=models.OrderStatus.brouillon)) == 2


def test_revision_demands_multiply_consumption() -> None:
    demands = procurement.revision_demands(
        4,
        [
            models.RevisionPart(article_id=1, quantity_per_unit=2),
            models.RevisionPart(article_id=2, quantity_per_unit=1),
            models.RevisionPart(article_id=1, quantity_per_unit=1),
        ],
    )

    assert [(d.article_id, d.required) for d in demands] == [(1, 12), (2, 4)]


def test_low_stock_demands_select_alerting_articles(make_article) -> None:
    empty = make_article(stock=0)
    below = make_article(stock=2, stock_min=5)
    at_threshold = make_article(stock=5, stock_min=5)
    make_article(stock=9, stock_min=5)

    demands = procurement.low_stock_demands()

    assert [(d.article_id, d.required) for d in demands] == [
        (empty.id, 1),
        (below.id, 5),
        (at_threshold.id, 6),
    ]


def test_low_stock_order_covers_article_at_threshold(
    make_article, make_supplier, magasinier
) -> None:
    supplier = make_supplier("Alerte")
    article = make_article(stock=5, stock_min=5, prix_achat=2.0)
    _link(article.id, supplier.id, quantite_minimum=3)

    result = procurement.build_procurement_orders(
        procurement.low_stock_demands(), magasinier, source="alerte_stock"
    )

    assert result.unresolved == []
    assert len(result.orders) == 1
    line = result.orders[0].lines[0]
    assert (line.article_id, line.quantite_commandee) == (article.id, 3)
