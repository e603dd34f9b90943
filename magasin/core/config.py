"""Configuration statique du magasin."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from magasin.core.env_loader import load_env

PROJECT_ROOT = Path(__file__).resolve().parents[2]

_TRUE_VALUES = {"1", "true", "yes", "on", "y", "t"}
_FALSE_VALUES = {"0", "false", "no", "off", "n", "f"}


def _get_env_flag(name: str, default: bool = False) -> bool:
    """Retourne une valeur booléenne à partir d'une variable d'environnement."""

    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def _get_env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= minimum else default


def _get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip().replace(",", "."))
    except ValueError:
        return default
    return value if value >= 0 else default


def _get_env_set(name: str, default: frozenset[str]) -> frozenset[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values = frozenset(part.strip().lower() for part in raw.split(",") if part.strip())
    return values or default


@dataclass(frozen=True)
class Settings:
    """Paramètres globaux lus depuis l'environnement."""

    DATA_DIR: Path = PROJECT_ROOT / "data"
    EXIT_DELETION_WINDOW_DAYS: int = 7
    DEFAULT_TAX_RATE: float = 20.0
    PRIVILEGED_ROLES: frozenset[str] = field(default_factory=lambda: frozenset({"admin"}))
    LEDGER_DEBUG: bool = False


def load_settings() -> Settings:
    load_env()
    data_dir = os.getenv("MAGASIN_DATA_DIR")
    return Settings(
        DATA_DIR=Path(data_dir) if data_dir else PROJECT_ROOT / "data",
        EXIT_DELETION_WINDOW_DAYS=_get_env_int("MAGASIN_EXIT_DELETION_WINDOW_DAYS", 7),
        DEFAULT_TAX_RATE=_get_env_float("MAGASIN_DEFAULT_TAX_RATE", 20.0),
        PRIVILEGED_ROLES=_get_env_set("MAGASIN_PRIVILEGED_ROLES", frozenset({"admin"})),
        LEDGER_DEBUG=_get_env_flag("MAGASIN_LEDGER_DEBUG", default=False),
    )


settings = load_settings()
