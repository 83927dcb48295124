"""
Tests for budget_config and process bootstrap.

Covers:
- defaults.yaml loads into the typed schema
- override file and BUDGET_* environment precedence
- unknown sections/keys and mistyped values are rejected
- bootstrap wires logging, engine, schema and listeners from config
"""

import importlib
import logging

import pytest

from budget_config import BudgetConfig, get_active_config
from budget_config.loader import (
    DEFAULTS_FILE,
    env_overrides,
    load_config,
    load_yaml_file,
    merge,
    parse_config,
)
from budget_config.schema import DatabaseConfig, LoggingConfig, ReferenceConfig
from budget_services import bootstrap as bootstrap_fn

# The package re-exports the function under the module's name.
bootstrap_module = importlib.import_module("budget_services.bootstrap")


def _write(tmp_path, text, name="budget.yaml"):
    path = tmp_path / name
    path.write_text(text)
    return path


class TestDefaults:
    def test_defaults_file_matches_schema_defaults(self):
        config = load_config(environ={})
        assert config.database == DatabaseConfig()
        assert config.logging == LoggingConfig()
        assert config.references == ReferenceConfig()
        assert config.source_files == (str(DEFAULTS_FILE),)

    def test_config_is_frozen(self):
        config = load_config(environ={})
        with pytest.raises(AttributeError):
            config.logging = LoggingConfig(level="DEBUG")


class TestOverrides:
    def test_override_file_merges_deeply(self, tmp_path):
        path = _write(tmp_path, "database:\n  url: postgresql://db/budget\n  echo: true\n")
        config = load_config(config_file=path, environ={})
        assert config.database.url == "postgresql://db/budget"
        assert config.database.echo is True
        assert config.database.pool_size == 20
        assert config.source_files[-1] == str(path)

    def test_config_file_from_environment(self, tmp_path):
        path = _write(tmp_path, "references:\n  retirement_prefix: RV\n")
        config = load_config(environ={"BUDGET_CONFIG_FILE": str(path)})
        assert config.references.retirement_prefix == "RV"

    def test_environment_beats_file(self, tmp_path):
        path = _write(tmp_path, "database:\n  url: sqlite:///file.db\nlogging:\n  level: ERROR\n")
        config = load_config(
            config_file=path,
            environ={"BUDGET_DATABASE_URL": "sqlite:///env.db", "BUDGET_LOG_LEVEL": "debug"},
        )
        assert config.database.url == "sqlite:///env.db"
        assert config.logging.level == "DEBUG"

    def test_empty_override_file(self, tmp_path):
        config = load_config(config_file=_write(tmp_path, ""), environ={})
        assert config.references.sequence_width == 4

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(config_file=tmp_path / "absent.yaml", environ={})


class TestValidation:
    @pytest.mark.parametrize(
        "data",
        [
            {"metrics": {}},
            {"database": {"host": "x"}},
            {"database": "sqlite://"},
            {"database": {"echo": "yes"}},
            {"database": {"pool_size": "20"}},
            {"database": {"pool_size": True}},
            {"references": {"expenditure_prefix": 7}},
            {"references": {"sequence_width": 0}},
        ],
    )
    def test_rejected(self, data):
        with pytest.raises(ValueError):
            parse_config(data)

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError):
            load_yaml_file(_write(tmp_path, "- a\n- b\n"))


class TestHelpers:
    def test_merge_is_recursive_and_pure(self):
        base = {"a": {"x": 1, "y": 2}, "b": 1}
        merged = merge(base, {"a": {"y": 3}, "c": 4})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}
        assert base == {"a": {"x": 1, "y": 2}, "b": 1}

    def test_env_overrides_ignores_unset_and_blank(self):
        assert env_overrides({}) == {}
        assert env_overrides({"BUDGET_DATABASE_URL": ""}) == {}


class TestGetActiveConfig:
    def test_logs_load(self, captured_logs):
        config = get_active_config(environ={})
        assert isinstance(config, BudgetConfig)
        record = [r for r in captured_logs() if r["message"] == "config_loaded"][-1]
        assert record["database_dialect"] == "sqlite"
        assert record["log_level"] == "INFO"


class TestBootstrap:
    def test_wires_components_from_config(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            bootstrap_module, "configure_logging", lambda level: calls.append(("logging", level))
        )
        monkeypatch.setattr(
            bootstrap_module,
            "init_engine_from_url",
            lambda url, **kw: calls.append(("engine", url, kw["pool_size"], kw["echo"])),
        )
        monkeypatch.setattr(bootstrap_module, "create_tables", lambda: calls.append(("tables",)))
        monkeypatch.setattr(
            bootstrap_module,
            "register_immutability_listeners",
            lambda: calls.append(("listeners",)),
        )
        config = BudgetConfig(
            database=DatabaseConfig(url="sqlite:///boot.db", pool_size=3),
            logging=LoggingConfig(level="WARNING"),
        )

        assert bootstrap_module.bootstrap(config) is config
        assert calls == [
            ("logging", "WARNING"),
            ("engine", "sqlite:///boot.db", 3, False),
            ("tables",),
            ("listeners",),
        ]

    def test_schema_creation_optional(self, monkeypatch):
        created = []
        monkeypatch.setattr(bootstrap_module, "configure_logging", lambda level: None)
        monkeypatch.setattr(bootstrap_module, "init_engine_from_url", lambda url, **kw: None)
        monkeypatch.setattr(bootstrap_module, "create_tables", lambda: created.append(True))
        monkeypatch.setattr(bootstrap_module, "register_immutability_listeners", lambda: None)

        bootstrap_module.bootstrap(BudgetConfig(), create_schema=False)
        assert created == []

    def test_exported_from_package(self):
        assert bootstrap_fn is bootstrap_module.bootstrap
        assert logging.getLogger("budget_kernel.services.bootstrap") is bootstrap_module.logger
