"""
Tests for Ledger -- amount/balance bookkeeping per line item.

Covers:
- allocate(): balance starts at amount; negative rejected
- reserve(): pure check, never mutates
- debit(): recomputes from the approved set, idempotent, rejects overdraw
- recalculate(): balance restored after approved spend shrinks
- utilization() / budget_utilization()
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from budget_kernel.domain.approval import ApprovalStatus
from budget_kernel.domain.utilization import UtilizationLevel
from budget_kernel.exceptions import (
    InsufficientBalanceError,
    LineItemNotFoundError,
    ValidationError,
)
from budget_kernel.models import BudgetLineItem, Expenditure


class TestAllocate:
    def test_balance_starts_at_amount(self, ledger):
        line_item = BudgetLineItem(code="X", name="X", category="capital", fiscal_year=2024)
        ledger.allocate(line_item, Decimal("2500"))
        assert line_item.amount == Decimal("2500")
        assert line_item.balance == Decimal("2500")

    def test_negative_amount_rejected(self, ledger):
        line_item = BudgetLineItem(code="X", name="X", category="capital", fiscal_year=2024)
        with pytest.raises(ValidationError) as exc_info:
            ledger.allocate(line_item, Decimal("-1"))
        assert exc_info.value.field == "amount"


class TestReserve:
    def test_within_balance_returns_available(self, ledger, line_item):
        assert ledger.reserve(line_item.id, Decimal("100000")) == Decimal("100000")

    def test_over_balance_raises_without_mutating(self, ledger, line_item):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            ledger.reserve(line_item.id, Decimal("100000.01"))
        assert exc_info.value.requested == Decimal("100000.01")
        assert exc_info.value.available == Decimal("100000")
        assert ledger.get_line_item(line_item.id).balance == Decimal("100000")

    def test_unknown_line_item(self, ledger):
        with pytest.raises(LineItemNotFoundError):
            ledger.reserve(uuid4(), Decimal("1"))


class TestDebit:
    def test_recomputes_from_approved_set(
        self, ledger, line_item, make_expenditure, approve_expenditure
    ):
        approve_expenditure(make_expenditure("30000"))
        approve_expenditure(make_expenditure("20000"))
        assert ledger.get_line_item(line_item.id).balance == Decimal("50000")

    def test_idempotent(self, ledger, line_item, make_expenditure, approve_expenditure):
        approve_expenditure(make_expenditure("60000"))
        first = ledger.debit(line_item.id).balance
        second = ledger.debit(line_item.id).balance
        assert first == second == Decimal("40000")

    def test_overdrawn_approved_set_raises(self, session, ledger, line_item, make_expenditure):
        expenditure = make_expenditure("90000")
        other = make_expenditure("20000")
        # Force both approved behind the ledger's back.
        session.execute(
            update(Expenditure)
            .where(Expenditure.id.in_([expenditure.id, other.id]))
            .values(status=ApprovalStatus.APPROVED.value)
        )
        with pytest.raises(InsufficientBalanceError) as exc_info:
            ledger.debit(line_item.id, Decimal("20000"))
        assert exc_info.value.available == Decimal("10000")

    def test_logs_debit(self, captured_logs, line_item, make_expenditure, approve_expenditure):
        approve_expenditure(make_expenditure("1000"))
        debits = [r for r in captured_logs() if r["message"] == "ledger_debited"]
        assert debits
        assert Decimal(debits[-1]["balance"]) == Decimal("99000")


class TestRecalculate:
    def test_allocation_below_spend_raises(
        self, session, ledger, line_item, make_expenditure, approve_expenditure
    ):
        approve_expenditure(make_expenditure("60000"))
        line_item.amount = Decimal("50000")
        session.flush()
        with pytest.raises(InsufficientBalanceError):
            ledger.recalculate(line_item.id)

    def test_restores_balance_after_spend_removed(
        self, session, ledger, line_item, make_expenditure, approve_expenditure
    ):
        expenditure = make_expenditure("60000")
        approve_expenditure(expenditure)
        expenditure.status = ApprovalStatus.REJECTED.value
        session.flush()
        assert ledger.recalculate(line_item.id).balance == Decimal("100000")


class TestUtilization:
    def test_line_item(self, ledger, line_item, make_expenditure, approve_expenditure):
        approve_expenditure(make_expenditure("80000"))
        usage = ledger.utilization(line_item.id)
        assert usage.percentage == Decimal("80.00")
        assert usage.level is UtilizationLevel.MEDIUM
        assert usage.spent == Decimal("80000")

    def test_budget_totals(self, ledger, approved_budget, make_expenditure, approve_expenditure):
        approve_expenditure(make_expenditure("25000"))
        usage = ledger.budget_utilization(approved_budget.id)
        assert usage.total_amount == Decimal("100000")
        assert usage.total_spent == Decimal("25000")
        assert usage.total_balance == Decimal("75000")
        assert usage.percentage == Decimal("25.00")
        assert usage.level is UtilizationLevel.NORMAL
        assert len(usage.line_items) == 1

    def test_drafts_do_not_count(self, ledger, line_item, make_expenditure):
        make_expenditure("99000")
        assert ledger.utilization(line_item.id).spent == Decimal("0")
