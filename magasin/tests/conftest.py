from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from magasin.core import catalog, db, models  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setattr(db, "DATA_DIR", data_dir)
    monkeypatch.setattr(db, "STOCK_DB_PATH", data_dir / "stock.db")
    db.init_databases()
    return data_dir


@pytest.fixture
def ledger_audit() -> Iterator[list[str]]:
    """Messages du journal d'audit émis pendant le test."""

    messages: list[str] = []

    class _Collector(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            messages.append(record.getMessage())

    audit = logging.getLogger("magasin.ledger")
    handler = _Collector(level=logging.INFO)
    previous_level = audit.level
    audit.addHandler(handler)
    audit.setLevel(logging.INFO)
    try:
        yield messages
    finally:
        audit.removeHandler(handler)
        audit.setLevel(previous_level)


@pytest.fixture
def admin() -> models.Actor:
    return models.Actor(username="chef", role="admin")


@pytest.fixture
def magasinier() -> models.Actor:
    return models.Actor(username="paul", role="magasinier")


@pytest.fixture
def make_supplier() -> Callable[..., models.Supplier]:
    def _make(nom: str, **fields) -> models.Supplier:
        return catalog.create_supplier(models.SupplierCreate(nom=nom, **fields))

    return _make


@pytest.fixture
def make_article() -> Callable[..., models.Article]:
    counter = {"value": 0}

    def _make(stock: int = 0, **fields) -> models.Article:
        counter["value"] += 1
        fields.setdefault("reference", f"REF-{counter['value']:03d}")
        fields.setdefault("designation", f"Article {counter['value']}")
        return catalog.create_article(
            models.ArticleCreate(stock=stock, **fields), actor="setup"
        )

    return _make
