"""
UtilizationSelector -- early-warning view over line-item utilization.

Computes spent/allocated for every active line item from approved,
non-deleted expenditures and reports the ones at or above the medium
threshold.  Nothing is cached; each call reflects committed data visible to
the caller's session.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from budget_kernel.domain.approval import ApprovalStatus
from budget_kernel.domain.utilization import LineItemUtilization, UtilizationLevel
from budget_kernel.models import Budget, BudgetLineItem, Expenditure
from budget_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class UtilizationWarning:
    budget_id: UUID
    budget_code: str
    line_item_id: UUID
    line_item_code: str
    line_item_name: str
    amount: Decimal
    spent: Decimal
    percentage: Decimal
    level: UtilizationLevel


class UtilizationSelector(BaseSelector):
    def _spent_by_line_item(self, budget_id: UUID | None) -> dict[UUID, Decimal]:
        stmt = (
            select(Expenditure.line_item_id, func.sum(Expenditure.amount))
            .where(
                Expenditure.status == ApprovalStatus.APPROVED.value,
                Expenditure.deleted_at.is_(None),
            )
            .group_by(Expenditure.line_item_id)
        )
        if budget_id is not None:
            stmt = stmt.where(Expenditure.budget_id == budget_id)
        return {
            line_item_id: Decimal(total or 0)
            for line_item_id, total in self.session.execute(stmt).all()
        }

    def line_item_level(self, line_item_id: UUID) -> UtilizationLevel:
        """Current level of one line item; normal when it does not exist."""
        amount = self.session.execute(
            select(BudgetLineItem.amount).where(BudgetLineItem.id == line_item_id)
        ).scalar_one_or_none()
        if amount is None:
            return UtilizationLevel.NORMAL
        spent = self.session.execute(
            select(func.coalesce(func.sum(Expenditure.amount), 0)).where(
                Expenditure.line_item_id == line_item_id,
                Expenditure.status == ApprovalStatus.APPROVED.value,
                Expenditure.deleted_at.is_(None),
            )
        ).scalar_one()
        return LineItemUtilization.compute(line_item_id, "", amount, Decimal(spent)).level

    def warnings(self, budget_id: UUID | None = None) -> list[UtilizationWarning]:
        """
        Line items whose level is not normal, highest utilization first.

        Soft-deleted budgets and line items are skipped.
        """
        spent = self._spent_by_line_item(budget_id)
        stmt = (
            select(BudgetLineItem, Budget.code)
            .join(Budget, Budget.id == BudgetLineItem.budget_id)
            .where(
                BudgetLineItem.deleted_at.is_(None),
                Budget.deleted_at.is_(None),
            )
        )
        if budget_id is not None:
            stmt = stmt.where(BudgetLineItem.budget_id == budget_id)

        results = []
        for line_item, budget_code in self.session.execute(stmt).all():
            usage = LineItemUtilization.compute(
                line_item.id, line_item.code, line_item.amount, spent.get(line_item.id, Decimal("0"))
            )
            if usage.level is UtilizationLevel.NORMAL:
                continue
            results.append(
                UtilizationWarning(
                    budget_id=line_item.budget_id,
                    budget_code=budget_code,
                    line_item_id=line_item.id,
                    line_item_code=line_item.code,
                    line_item_name=line_item.name,
                    amount=usage.amount,
                    spent=usage.spent,
                    percentage=usage.percentage,
                    level=usage.level,
                )
            )
        results.sort(key=lambda w: (-w.percentage, w.budget_code, w.line_item_code))
        return results
