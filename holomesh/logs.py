"""Logging setup shared by the CLI and library callers."""

from __future__ import annotations

import logging
import os


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(default_level: str = "INFO", level: str | None = None) -> None:
    """Configure root logging; an explicit ``level`` wins over ``$LOG_LEVEL``, which wins over the default."""

    level_name = (level or os.getenv("LOG_LEVEL", default_level)).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
