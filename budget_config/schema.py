"""
Typed configuration (``budget_config.schema``).

Frozen dataclasses produced by ``budget_config.loader``.  Utilization
thresholds are not configurable; they are fixed in
``budget_kernel.domain.utilization``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class ReferenceConfig:
    """Prefixes and counter width for EXP-/RET- reference numbers."""

    expenditure_prefix: str = "EXP"
    retirement_prefix: str = "RET"
    sequence_width: int = 4


@dataclass(frozen=True)
class BudgetConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    references: ReferenceConfig = field(default_factory=ReferenceConfig)
    source_files: tuple[str, ...] = ()
