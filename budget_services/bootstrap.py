"""
Process startup (``budget_services.bootstrap``).

Wires configuration into the kernel: logging, engine, schema and the ORM
immutability listeners.  Call once per process before opening sessions.
"""

from __future__ import annotations

from budget_config import BudgetConfig, get_active_config
from budget_kernel.db.engine import create_tables, init_engine_from_url
from budget_kernel.db.immutability import register_immutability_listeners
from budget_kernel.logging_config import configure_logging, get_logger

logger = get_logger("services.bootstrap")


def bootstrap(config: BudgetConfig | None = None, *, create_schema: bool = True) -> BudgetConfig:
    config = config or get_active_config()
    configure_logging(level=config.logging.level)

    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )
    if create_schema:
        create_tables()
    register_immutability_listeners()

    logger.info(
        "bootstrap_complete",
        extra={"schema_created": create_schema, "config_sources": list(config.source_files)},
    )
    return config
