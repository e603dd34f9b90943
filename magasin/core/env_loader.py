"""Chargement minimaliste des variables depuis le fichier .env."""
from __future__ import annotations

import os
import threading
from pathlib import Path

_loaded = False
_lock = threading.Lock()


def _env_file_path() -> Path:
    override = os.getenv("MAGASIN_ENV_FILE")
    if override:
        return Path(override)
    return Path(__file__).resolve().parents[2] / ".env"


def _parse_line(line: str) -> tuple[str, str] | None:
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return None
    key, value = stripped.split("=", 1)
    key = key.strip()
    if key.startswith("export "):
        key = key[len("export "):].strip()
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    if not key:
        return None
    return key, value


def load_env(*, force: bool = False) -> None:
    """Charge les variables du fichier .env sans écraser l'environnement courant."""
    global _loaded
    if _loaded and not force:
        return
    with _lock:
        if _loaded and not force:
            return
        env_path = _env_file_path()
        if env_path.exists():
            for line in env_path.read_text(encoding="utf-8").splitlines():
                parsed = _parse_line(line)
                if parsed is not None:
                    os.environ.setdefault(*parsed)
        _loaded = True
