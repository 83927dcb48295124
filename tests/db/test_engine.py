"""
Tests for budget_kernel.db.engine session helpers.

Covers:
- session_scope commits on success, rolls back and re-raises on failure
- session factory and dialect detection on the configured engine
"""

import pytest
from sqlalchemy import delete, select

from budget_kernel.db.engine import get_engine, get_session_factory, is_postgres, session_scope
from budget_kernel.services.sequence_service import SequenceCounter

COUNTER_PREFIX = "engine-test:"


@pytest.fixture
def cleanup_counters(db_tables):
    yield
    with get_engine().begin() as conn:
        conn.execute(delete(SequenceCounter).where(SequenceCounter.name.startswith(COUNTER_PREFIX)))


def _counter_names() -> list[str]:
    with session_scope() as s:
        return list(
            s.execute(
                select(SequenceCounter.name).where(SequenceCounter.name.startswith(COUNTER_PREFIX))
            ).scalars()
        )


class TestSessionScope:
    def test_commits_on_success(self, cleanup_counters):
        with session_scope() as s:
            s.add(SequenceCounter(name=f"{COUNTER_PREFIX}ok", current_value=1))
        assert _counter_names() == [f"{COUNTER_PREFIX}ok"]

    def test_rolls_back_and_reraises(self, cleanup_counters, captured_logs):
        with pytest.raises(RuntimeError, match="abort"):
            with session_scope() as s:
                s.add(SequenceCounter(name=f"{COUNTER_PREFIX}lost", current_value=1))
                s.flush()
                raise RuntimeError("abort")

        assert _counter_names() == []
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


class TestEngineHelpers:
    def test_factory_builds_sessions_on_engine(self, db_engine):
        s = get_session_factory()()
        try:
            assert s.get_bind() is get_engine()
        finally:
            s.close()

    def test_dialect_detection(self, db_engine):
        assert is_postgres() == (db_engine.dialect.name == "postgresql")
