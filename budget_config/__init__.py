"""
budget_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    Nothing else reads configuration files or ``BUDGET_*`` environment
    variables.

Architecture position:
    Sits beside ``budget_kernel`` and below ``budget_services``.  The kernel
    MUST NEVER import from ``budget_config``; the facade passes the relevant
    values (reference prefixes, database URL) into kernel constructors.

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``ValueError`` -- unknown keys or mistyped values.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

from budget_config.loader import load_config
from budget_config.schema import BudgetConfig, DatabaseConfig, LoggingConfig, ReferenceConfig

_logger = logging.getLogger("budget_kernel.config")


def get_active_config(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> BudgetConfig:
    """The public configuration entrypoint.  Not cached."""
    config = load_config(config_file=config_file, environ=environ)
    _logger.info(
        "config_loaded",
        extra={
            "source_files": list(config.source_files),
            "database_dialect": config.database.url.split(":", 1)[0],
            "log_level": config.logging.level,
        },
    )
    return config


__all__ = [
    "BudgetConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "ReferenceConfig",
    "get_active_config",
]
