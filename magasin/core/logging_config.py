from __future__ import annotations

import logging
import logging.config
from collections.abc import Iterable
from pathlib import Path

from magasin.core.config import PROJECT_ROOT, settings

LOG_DIR = PROJECT_ROOT / "logs"

DEFAULT_EXCLUDED_ACCESS_PATHS = ("/health",)


class AccessPathExcludeFilter(logging.Filter):
    """Drop uvicorn access records whose request path is in ``paths``."""

    def __init__(self, paths: Iterable[str] = DEFAULT_EXCLUDED_ACCESS_PATHS) -> None:
        super().__init__()
        self.paths = frozenset(paths)

    def filter(self, record: logging.LogRecord) -> bool:
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            path = str(args[2]).split("?", 1)[0]
            return path not in self.paths
        return True


def configure_logging(log_dir: Path | None = None) -> None:
    """Configure application-wide logging with rotating file handlers."""

    target_dir = log_dir or LOG_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    logging.captureWarnings(True)

    console_level = "DEBUG" if settings.LEDGER_DEBUG else "INFO"

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "exclude_health": {
                "()": AccessPathExcludeFilter,
                "paths": list(DEFAULT_EXCLUDED_ACCESS_PATHS),
            }
        },
        "formatters": {
            "verbose": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "audit": {
                "format": "%(asctime)s %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": console_level,
                "formatter": "verbose",
            },
            "app_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "DEBUG",
                "formatter": "verbose",
                "filename": str(target_dir / "magasin.log"),
                "maxBytes": 5 * 1024 * 1024,
                "backupCount": 5,
                "encoding": "utf-8",
            },
            "ledger_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "INFO",
                "formatter": "audit",
                "filename": str(target_dir / "ledger.log"),
                "maxBytes": 5 * 1024 * 1024,
                "backupCount": 5,
                "encoding": "utf-8",
            },
        },
        "loggers": {
            "": {
                "handlers": ["console", "app_file"],
                "level": "DEBUG",
            },
            "magasin.ledger": {
                "handlers": ["ledger_file"],
                "level": "INFO",
                "propagate": False,
            },
            "uvicorn": {
                "handlers": ["console", "app_file"],
                "level": "INFO",
                "propagate": False,
            },
            "uvicorn.error": {
                "handlers": ["console", "app_file"],
                "level": "INFO",
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": ["console", "app_file"],
                "filters": ["exclude_health"],
                "level": "INFO",
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(logging_config)


__all__ = ["AccessPathExcludeFilter", "configure_logging", "LOG_DIR"]
