"""Gestion des connexions SQLite du magasin."""
from __future__ import annotations

import logging
import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import ContextManager

from magasin.core.config import settings

DATA_DIR = settings.DATA_DIR
STOCK_DB_PATH = DATA_DIR / "stock.db"

logger = logging.getLogger(__name__)

_db_lock = RLock()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


_SCHEMA = """
CREATE TABLE IF NOT EXISTS fournisseurs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    nom TEXT NOT NULL COLLATE NOCASE,
    email TEXT,
    telephone TEXT,
    adresse TEXT,
    actif INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(nom)
);
CREATE TABLE IF NOT EXISTS articles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reference TEXT UNIQUE NOT NULL,
    designation TEXT NOT NULL,
    categorie TEXT,
    marque TEXT,
    stock INTEGER NOT NULL DEFAULT 0,
    stock_min INTEGER NOT NULL DEFAULT 0,
    stock_max INTEGER NOT NULL DEFAULT 0,
    prix_achat REAL NOT NULL DEFAULT 0,
    fournisseur_id INTEGER REFERENCES fournisseurs(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS article_fournisseurs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
    fournisseur_id INTEGER NOT NULL REFERENCES fournisseurs(id) ON DELETE CASCADE,
    prix_fournisseur REAL,
    est_principal INTEGER NOT NULL DEFAULT 0,
    actif INTEGER NOT NULL DEFAULT 1,
    quantite_minimum INTEGER,
    reference_fournisseur TEXT,
    UNIQUE(article_id, fournisseur_id)
);
CREATE TABLE IF NOT EXISTS stock_movements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE RESTRICT,
    delta INTEGER NOT NULL CHECK (delta != 0),
    reason TEXT NOT NULL,
    actor TEXT NOT NULL,
    exit_id INTEGER REFERENCES stock_exits(id),
    entry_id INTEGER REFERENCES stock_entries(id),
    order_id INTEGER REFERENCES commandes(id),
    note TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_stock_movements_article
ON stock_movements(article_id, id);
CREATE TRIGGER IF NOT EXISTS trg_stock_movements_no_update
BEFORE UPDATE ON stock_movements
BEGIN
    SELECT RAISE(ABORT, 'Mouvement de stock immuable');
END;
CREATE TRIGGER IF NOT EXISTS trg_stock_movements_no_delete
BEFORE DELETE ON stock_movements
BEGIN
    SELECT RAISE(ABORT, 'Mouvement de stock immuable');
END;
CREATE TABLE IF NOT EXISTS stock_exits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    exit_number TEXT UNIQUE NOT NULL,
    exit_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    return_status TEXT,
    client_name TEXT,
    vehicule_id TEXT,
    department TEXT,
    notes TEXT,
    caution_amount REAL,
    expected_return_date TEXT,
    actual_return_date TEXT,
    damage_description TEXT,
    reimbursement_amount REAL,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    deleted_at TEXT,
    deleted_by TEXT,
    deleted_reason TEXT
);
CREATE TABLE IF NOT EXISTS stock_exit_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    exit_id INTEGER NOT NULL REFERENCES stock_exits(id) ON DELETE CASCADE,
    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE RESTRICT,
    quantity INTEGER NOT NULL CHECK (quantity > 0)
);
CREATE TABLE IF NOT EXISTS stock_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_number TEXT UNIQUE NOT NULL,
    entry_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    supplier_id INTEGER REFERENCES fournisseurs(id) ON DELETE SET NULL,
    invoice_number TEXT,
    notes TEXT,
    total_amount REAL NOT NULL DEFAULT 0,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    deleted_at TEXT,
    deleted_by TEXT,
    deleted_reason TEXT
);
CREATE TABLE IF NOT EXISTS stock_entry_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id INTEGER NOT NULL REFERENCES stock_entries(id) ON DELETE CASCADE,
    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE RESTRICT,
    quantity INTEGER NOT NULL CHECK (quantity > 0),
    unit_price REAL NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS commandes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    numero_commande TEXT UNIQUE NOT NULL,
    fournisseur TEXT NOT NULL,
    fournisseur_id INTEGER REFERENCES fournisseurs(id) ON DELETE SET NULL,
    email_fournisseur TEXT,
    telephone_fournisseur TEXT,
    adresse_fournisseur TEXT,
    status TEXT NOT NULL DEFAULT 'brouillon',
    tva_taux REAL NOT NULL DEFAULT 20,
    total_ht REAL NOT NULL DEFAULT 0,
    total_ttc REAL NOT NULL DEFAULT 0,
    notes TEXT,
    source TEXT,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL,
    date_envoi TEXT,
    date_reception_reelle TEXT
);
CREATE INDEX IF NOT EXISTS idx_commandes_fournisseur_status
ON commandes(fournisseur, status);
CREATE TABLE IF NOT EXISTS commande_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    commande_id INTEGER NOT NULL REFERENCES commandes(id) ON DELETE CASCADE,
    article_id INTEGER REFERENCES articles(id) ON DELETE SET NULL,
    designation TEXT NOT NULL,
    reference TEXT,
    quantite_commandee INTEGER NOT NULL CHECK (quantite_commandee > 0),
    quantite_recue INTEGER NOT NULL DEFAULT 0 CHECK (quantite_recue >= 0),
    prix_unitaire REAL NOT NULL DEFAULT 0 CHECK (prix_unitaire >= 0),
    total_ligne REAL NOT NULL DEFAULT 0
);
"""


def _connect(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def _managed_connection(path: Path, *, write: bool = False) -> Iterator[sqlite3.Connection]:
    """Yield a SQLite connection that is always closed on exit.

    With ``write=True`` the transaction is opened with ``BEGIN IMMEDIATE`` so
    that concurrent writers (other workers, other processes) queue on the
    database lock instead of interleaving their read-check-write sequences.
    """

    conn = _connect(path)
    try:
        if write:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        if conn.in_transaction:
            conn.rollback()
        raise
    finally:
        conn.close()


def get_stock_connection(*, write: bool = False) -> ContextManager[sqlite3.Connection]:
    return _managed_connection(STOCK_DB_PATH, write=write)


def next_document_number(conn: sqlite3.Connection, table: str, column: str, prefix: str) -> str:
    """Retourne ``<prefix>NNNN``, la séquence repartant à 1 pour chaque préfixe.

    Le suffixe est comparé numériquement: au-delà de 9999 il s'allonge.
    """

    row = conn.execute(
        f"SELECT MAX(CAST(substr({column}, ?) AS INTEGER)) AS last "
        f"FROM {table} WHERE {column} LIKE ?",
        (len(prefix) + 1, f"{prefix}%"),
    ).fetchone()
    sequence = (row["last"] or 0) + 1
    return f"{prefix}{sequence:04d}"


def init_databases() -> None:
    with _db_lock:
        with get_stock_connection() as conn:
            conn.executescript(_SCHEMA)


def ensure_database_ready() -> None:
    init_databases()


logger.debug("[DB] pid=%s STOCK_DB_PATH=%s", os.getpid(), STOCK_DB_PATH)
