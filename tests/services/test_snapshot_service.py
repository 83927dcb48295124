"""
Tests for SnapshotService -- point-in-time captures and comparison.

Covers:
- create_snapshot(): payload, type validation, single baseline
- get_snapshots() filters, get_baseline_snapshot()
- compare_snapshots(): scalar and line-item diffs, cross-budget guard
"""

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from budget_kernel.domain.dtos import SnapshotType
from budget_kernel.exceptions import SnapshotNotFoundError, ValidationError
from budget_kernel.models import BudgetSnapshot
from tests.factories import budget_spec


def _baseline_count(session, budget_id) -> int:
    return session.execute(
        select(func.count(BudgetSnapshot.id)).where(
            BudgetSnapshot.budget_id == budget_id,
            BudgetSnapshot.is_baseline.is_(True),
        )
    ).scalar_one()


class TestCreateSnapshot:
    def test_serializes_budget_and_line_items(self, snapshot_service, draft_budget, test_actor_id):
        snapshot = snapshot_service.create_snapshot(draft_budget.id, test_actor_id)

        assert snapshot.snapshot_type == "ad-hoc"
        assert snapshot.snapshot_date == date(2024, 1, 1)
        assert snapshot.fiscal_year == 2024
        assert snapshot.data["budget"]["code"] == draft_budget.code
        assert snapshot.data["budget"]["total_amount"] == "100000.00"
        assert [li["code"] for li in snapshot.data["line_items"]] == ["LI-001"]
        assert snapshot.details == {"budget_title": draft_budget.title, "budget_code": draft_budget.code}

    def test_unknown_type_rejected(self, snapshot_service, draft_budget, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            snapshot_service.create_snapshot(draft_budget.id, test_actor_id, snapshot_type="weekly")
        assert exc_info.value.field == "snapshot_type"

    def test_new_baseline_clears_previous(self, session, snapshot_service, draft_budget, test_actor_id):
        first = snapshot_service.create_snapshot(draft_budget.id, test_actor_id, is_baseline=True)
        second = snapshot_service.create_snapshot(draft_budget.id, test_actor_id, is_baseline=True)

        assert first.is_baseline is False
        assert second.is_baseline is True
        assert _baseline_count(session, draft_budget.id) == 1

    def test_non_baseline_leaves_baseline_alone(self, snapshot_service, draft_budget, test_actor_id):
        baseline = snapshot_service.create_snapshot(draft_budget.id, test_actor_id, is_baseline=True)
        snapshot_service.create_snapshot(draft_budget.id, test_actor_id)
        assert baseline.is_baseline is True
        assert snapshot_service.get_baseline_snapshot(draft_budget.id).id == baseline.id


class TestQueries:
    def test_filters_by_type_and_date(
        self, snapshot_service, deterministic_clock, draft_budget, test_actor_id
    ):
        snapshot_service.create_snapshot(draft_budget.id, test_actor_id, SnapshotType.MONTHLY)
        deterministic_clock.set_time(datetime(2024, 3, 31, 12, tzinfo=timezone.utc))
        quarterly = snapshot_service.create_snapshot(draft_budget.id, test_actor_id, SnapshotType.QUARTERLY)

        assert [s.id for s in snapshot_service.get_snapshots(draft_budget.id, "quarterly")] == [quarterly.id]
        assert len(snapshot_service.get_snapshots(draft_budget.id)) == 2
        later = snapshot_service.get_snapshots(draft_budget.id, start_date=date(2024, 2, 1))
        assert [s.id for s in later] == [quarterly.id]
        earlier = snapshot_service.get_snapshots(draft_budget.id, end_date=date(2024, 2, 1))
        assert len(earlier) == 1

    def test_invalid_type_filter(self, snapshot_service, draft_budget):
        with pytest.raises(ValidationError):
            snapshot_service.get_snapshots(draft_budget.id, "hourly")

    def test_missing_baseline(self, snapshot_service, draft_budget):
        with pytest.raises(SnapshotNotFoundError):
            snapshot_service.get_baseline_snapshot(draft_budget.id)

    def test_missing_snapshot(self, snapshot_service):
        with pytest.raises(SnapshotNotFoundError):
            snapshot_service.get_snapshot(uuid4())


class TestCompareSnapshots:
    def test_detects_changes(self, snapshot_service, budget_store, draft_budget, test_actor_id):
        before = snapshot_service.create_snapshot(draft_budget.id, test_actor_id)
        budget_store.update_budget(
            draft_budget.id,
            {
                "title": "Revised",
                "line_items": [
                    {"code": "LI-001", "name": "Line LI-001", "category": "recurrent", "amount": "90000"},
                    {"code": "LI-002", "name": "Added", "category": "capital", "amount": "10000"},
                ],
            },
            test_actor_id,
        )
        after = snapshot_service.create_snapshot(draft_budget.id, test_actor_id)

        comparison = snapshot_service.compare_snapshots(before.id, after.id)

        changed = {c.field: (c.old_value, c.new_value) for c in comparison.budget_changes}
        assert changed["title"] == (f"Budget {draft_budget.code}", "Revised")
        assert "total_amount" not in changed  # 90000 + 10000 == 100000
        assert [i["code"] for i in comparison.line_items.added] == ["LI-002"]
        modified = comparison.line_items.modified[0]
        assert modified.code == "LI-001"
        assert {c.field for c in modified.changes} == {"amount", "balance"}
        assert comparison.summary.added == 1
        assert comparison.summary.modified == 1

    def test_snapshots_of_different_budgets_rejected(
        self, snapshot_service, budget_store, draft_budget, org_unit_id, test_actor_id
    ):
        other = budget_store.create_budget(budget_spec(org_unit_id, code="OTHER"), test_actor_id)
        s1 = snapshot_service.create_snapshot(draft_budget.id, test_actor_id)
        s2 = snapshot_service.create_snapshot(other.id, test_actor_id)
        with pytest.raises(ValidationError):
            snapshot_service.compare_snapshots(s1.id, s2.id)
