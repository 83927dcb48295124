"""
Configuration Loader (``budget_config.loader``).

Responsibility
--------------
Reads ``defaults.yaml``, deep-merges an optional override file and the
environment overrides, and parses the result into the frozen
``budget_config.schema`` dataclasses.  Callers use
``budget_config.get_active_config()`` rather than this module.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, or a value of the wrong type  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from budget_config.schema import BudgetConfig, DatabaseConfig, LoggingConfig, ReferenceConfig

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"

ENV_CONFIG_FILE = "BUDGET_CONFIG_FILE"
ENV_DATABASE_URL = "BUDGET_DATABASE_URL"
ENV_LOG_LEVEL = "BUDGET_LOG_LEVEL"

_SECTIONS = {
    "database": DatabaseConfig,
    "logging": LoggingConfig,
    "references": ReferenceConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML mapping; an empty file yields ``{}``."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; override wins on scalars."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if environ.get(ENV_DATABASE_URL):
        overrides.setdefault("database", {})["url"] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_LOG_LEVEL):
        overrides.setdefault("logging", {})["level"] = environ[ENV_LOG_LEVEL].upper()
    return overrides


def _parse_section(name: str, cls: type, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ValueError(f"Config section {name!r} must be a mapping")
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown keys in config section {name!r}: {sorted(unknown)}")
    values = {}
    for key, value in data.items():
        default = getattr(cls(), key)
        # bool is checked first; it is a subclass of int.
        if isinstance(default, bool):
            if not isinstance(value, bool):
                raise ValueError(f"{name}.{key} must be a boolean, got {value!r}")
        elif isinstance(default, int):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name}.{key} must be an integer, got {value!r}")
        elif not isinstance(value, str):
            raise ValueError(f"{name}.{key} must be a string, got {value!r}")
        values[key] = value
    return cls(**values)


def parse_config(data: Mapping[str, Any], source_files: tuple[str, ...] = ()) -> BudgetConfig:
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config sections: {sorted(unknown)}")
    sections = {name: _parse_section(name, cls, data.get(name)) for name, cls in _SECTIONS.items()}
    references = sections["references"]
    if references.sequence_width < 1:
        raise ValueError("references.sequence_width must be at least 1")
    return BudgetConfig(source_files=source_files, **sections)


def load_config(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> BudgetConfig:
    """
    defaults.yaml <- config_file (or $BUDGET_CONFIG_FILE) <- env overrides.
    """
    environ = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_FILE)
    sources = [str(DEFAULTS_FILE)]

    override_path = config_file or (
        Path(environ[ENV_CONFIG_FILE]) if environ.get(ENV_CONFIG_FILE) else None
    )
    if override_path is not None:
        data = merge(data, load_yaml_file(override_path))
        sources.append(str(override_path))

    data = merge(data, env_overrides(environ))
    return parse_config(data, tuple(sources))
