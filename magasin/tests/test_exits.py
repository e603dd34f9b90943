from __future__ import annotations

import dataclasses
import re
from datetime import date, timedelta

import pytest

from magasin.core import catalog, config, db, exits, ledger, models
from magasin.core.errors import (
    AlreadyDeletedError,
    InsufficientStockError,
    InvalidTransitionError,
    ValidationError,
)


def _rental(article_id: int, quantity: int, **fields) -> models.StockExitCreate:
    return models.StockExitCreate(
        exit_type=models.ExitType.location_accessoire,
        lines=[models.ExitLineCreate(article_id=article_id, quantity=quantity)],
        **fields,
    )


def _stock(article_id: int) -> int:
    return catalog.get_article(article_id).stock


def test_rental_round_trip_restores_stock(make_article, magasinier) -> None:
    article = make_article(stock=10, stock_min=5)

    created = exits.create_exit(_rental(article.id, 3, client_name="Durand"), magasinier)
    assert _stock(article.id) == 7
    assert created.state is models.ExitState.en_cours

    returned = exits.process_return(
        created.id, models.ReturnPayload(outcome=models.ReturnOutcome.ok), magasinier
    )
    assert _stock(article.id) == 10
    assert returned.state is models.ExitState.retourne_ok
    assert returned.actual_return_date is not None

    with pytest.raises(InvalidTransitionError):
        exits.process_return(
            created.id, models.ReturnPayload(outcome=models.ReturnOutcome.ok), magasinier
        )
    assert _stock(article.id) == 10
    assert ledger.verify_article(article.id).consistent is True


def test_exit_creation_is_all_or_nothing(make_article, magasinier) -> None:
    plenty = make_article(stock=10)
    scarce = make_article(stock=1)
    payload = models.StockExitCreate(
        exit_type=models.ExitType.consommation,
        lines=[
            models.ExitLineCreate(article_id=plenty.id, quantity=4),
            models.ExitLineCreate(article_id=scarce.id, quantity=2),
        ],
    )

    with pytest.raises(InsufficientStockError):
        exits.create_exit(payload, magasinier)

    assert _stock(plenty.id) == 10
    assert _stock(scarce.id) == 1
    assert exits.list_exits(include_deleted=True) == []
    assert len(ledger.list_movements(plenty.id)) == 1


def test_audit_log_only_records_committed_movements(
    make_article, magasinier, ledger_audit
) -> None:
    plenty = make_article(stock=10)
    scarce = make_article(stock=1)
    ledger_audit.clear()

    with pytest.raises(InsufficientStockError):
        exits.create_exit(
            models.StockExitCreate(
                exit_type=models.ExitType.consommation,
                lines=[
                    models.ExitLineCreate(article_id=plenty.id, quantity=4),
                    models.ExitLineCreate(article_id=scarce.id, quantity=2),
                ],
            ),
            magasinier,
        )
    assert ledger_audit == []

    created = exits.create_exit(
        models.StockExitCreate(
            exit_type=models.ExitType.consommation,
            lines=[models.ExitLineCreate(article_id=plenty.id, quantity=4)],
        ),
        magasinier,
    )

    assert len(ledger_audit) == 1
    assert ledger_audit[0].startswith(f"article={plenty.id} delta=-4 reason=issue actor=paul")
    assert f"stock=6 exit={created.id}" in ledger_audit[0]


def test_non_rental_exit_has_no_return_tracking(make_article, magasinier) -> None:
    article = make_article(stock=4)
    created = exits.create_exit(
        models.StockExitCreate(
            exit_type=models.ExitType.utilisation_vehicule,
            vehicule_id="VH-12",
            lines=[
                models.ExitLineCreate(article_id=article.id, quantity=1),
                models.ExitLineCreate(article_id=article.id, quantity=2),
            ],
        ),
        magasinier,
    )

    assert created.state is models.ExitState.untracked
    assert created.return_status is None
    assert [(line.article_id, line.quantity) for line in created.lines] == [(article.id, 3)]
    assert re.fullmatch(r"SOR-\d{8}-0001", created.exit_number)
    assert len(ledger.list_movements(article.id)) == 2
    with pytest.raises(InvalidTransitionError):
        exits.process_return(
            created.id, models.ReturnPayload(outcome=models.ReturnOutcome.ok), magasinier
        )


def test_damaged_return_requires_description_and_keeps_stock(make_article, magasinier) -> None:
    article = make_article(stock=5)
    created = exits.create_exit(_rental(article.id, 2, caution_amount=50), magasinier)

    with pytest.raises(ValidationError):
        exits.process_return(
            created.id,
            models.ReturnPayload(outcome=models.ReturnOutcome.damaged, damage_description="  "),
            magasinier,
        )
    assert exits.get_exit(created.id).state is models.ExitState.en_cours

    damaged = exits.process_return(
        created.id,
        models.ReturnPayload(
            outcome=models.ReturnOutcome.damaged,
            damage_description="Câble sectionné",
            reimbursement_amount=35.5,
        ),
        magasinier,
    )

    assert damaged.state is models.ExitState.retourne_endommage
    assert damaged.damage_description == "Câble sectionné"
    assert damaged.reimbursement_amount == 35.5
    assert _stock(article.id) == 3


def test_not_returned_outcome_is_terminal(make_article, magasinier) -> None:
    article = make_article(stock=5)
    created = exits.create_exit(_rental(article.id, 1), magasinier)

    lost = exits.process_return(
        created.id, models.ReturnPayload(outcome=models.ReturnOutcome.not_returned), magasinier
    )

    assert lost.state is models.ExitState.non_retourne
    assert lost.actual_return_date is None
    assert _stock(article.id) == 4
    with pytest.raises(InvalidTransitionError):
        exits.process_return(
            created.id, models.ReturnPayload(outcome=models.ReturnOutcome.ok), magasinier
        )


def test_soft_delete_restores_stock_once(make_article, admin) -> None:
    article = make_article(stock=8)
    created = exits.create_exit(
        models.StockExitCreate(
            exit_type=models.ExitType.perte_casse,
            lines=[models.ExitLineCreate(article_id=article.id, quantity=5)],
        ),
        admin,
    )
    assert _stock(article.id) == 3

    with pytest.raises(ValidationError):
        exits.soft_delete_exit(created.id, "   ", admin)

    deleted = exits.soft_delete_exit(created.id, "Saisie en double", admin)
    assert deleted.state is models.ExitState.deleted
    assert deleted.deleted_by == "chef"
    assert deleted.deleted_reason == "Saisie en double"
    assert _stock(article.id) == 8

    with pytest.raises(AlreadyDeletedError):
        exits.soft_delete_exit(created.id, "Encore", admin)
    assert _stock(article.id) == 8
    reasons = [movement.reason for movement in ledger.list_movements(article.id)]
    assert reasons.count("deletion-reversal") == 1


def test_deleting_returned_rental_does_not_credit_twice(make_article, admin) -> None:
    article = make_article(stock=6)
    created = exits.create_exit(_rental(article.id, 2), admin)
    exits.process_return(created.id, models.ReturnPayload(outcome=models.ReturnOutcome.ok), admin)

    exits.soft_delete_exit(created.id, "Erreur de saisie", admin)

    assert _stock(article.id) == 6
    assert ledger.verify_article(article.id).consistent is True


@pytest.mark.parametrize(
    "payload",
    [
        models.ReturnPayload(
            outcome=models.ReturnOutcome.damaged, damage_description="Écran fêlé"
        ),
        models.ReturnPayload(outcome=models.ReturnOutcome.not_returned),
    ],
    ids=["damaged", "not_returned"],
)
def test_deleting_closed_rental_restores_stock_once(make_article, admin, payload) -> None:
    article = make_article(stock=6)
    created = exits.create_exit(_rental(article.id, 2), admin)
    exits.process_return(created.id, payload, admin)
    assert _stock(article.id) == 4

    deleted = exits.soft_delete_exit(created.id, "Erreur de saisie", admin)

    assert deleted.state is models.ExitState.deleted
    assert _stock(article.id) == 6
    with pytest.raises(AlreadyDeletedError):
        exits.soft_delete_exit(created.id, "Encore", admin)
    assert _stock(article.id) == 6
    reasons = [movement.reason for movement in ledger.list_movements(article.id)]
    assert reasons.count("deletion-reversal") == 1
    assert ledger.verify_article(article.id).consistent is True


def test_return_after_deletion_is_rejected(make_article, admin) -> None:
    article = make_article(stock=6)
    created = exits.create_exit(_rental(article.id, 2), admin)
    exits.soft_delete_exit(created.id, "Annulée", admin)

    with pytest.raises(InvalidTransitionError):
        exits.process_return(
            created.id, models.ReturnPayload(outcome=models.ReturnOutcome.ok), admin
        )
    assert _stock(article.id) == 6


def test_deletion_eligibility(make_article, admin, magasinier, monkeypatch) -> None:
    article = make_article(stock=3)
    created = exits.create_exit(_rental(article.id, 1), magasinier)

    assert exits.can_delete_exit(created, admin) is True
    assert exits.can_delete_exit(created, magasinier) is False
    assert exits.get_exit(created.id, admin).deletable is True
    assert exits.get_exit(created.id, magasinier).deletable is False

    later = created.created_at + timedelta(days=8)
    assert exits.can_delete_exit(created, admin, now=later) is False

    monkeypatch.setattr(
        config,
        "settings",
        dataclasses.replace(config.settings, EXIT_DELETION_WINDOW_DAYS=10),
    )
    assert exits.can_delete_exit(created, admin, now=later) is True


def test_active_rentals_flags_overdue(make_article, magasinier) -> None:
    article = make_article(stock=10)
    today = date.today()
    late = exits.create_exit(
        _rental(article.id, 1, expected_return_date=today - timedelta(days=2)), magasinier
    )
    on_time = exits.create_exit(
        _rental(article.id, 1, expected_return_date=today + timedelta(days=3)), magasinier
    )
    closed = exits.create_exit(_rental(article.id, 1), magasinier)
    exits.process_return(closed.id, models.ReturnPayload(outcome=models.ReturnOutcome.ok), magasinier)

    rentals = exits.list_active_rentals(today=today)

    assert [item.id for item in rentals] == [late.id, on_time.id]
    assert [item.overdue for item in rentals] == [True, False]


def test_deleted_exits_hidden_by_default(make_article, admin) -> None:
    article = make_article(stock=4)
    kept = exits.create_exit(_rental(article.id, 1), admin)
    removed = exits.create_exit(_rental(article.id, 1), admin)
    exits.soft_delete_exit(removed.id, "Doublon", admin)

    assert [item.id for item in exits.list_exits()] == [kept.id]
    assert {item.id for item in exits.list_exits(include_deleted=True)} == {kept.id, removed.id}
    assert removed.exit_number != kept.exit_number
    with db.get_stock_connection() as conn:
        numbers = [row["exit_number"] for row in conn.execute("SELECT exit_number FROM stock_exits")]
    assert len(set(numbers)) == 2
