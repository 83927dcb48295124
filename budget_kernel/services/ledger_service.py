"""
Ledger -- line-item allocation and the non-negative balance invariant.

Responsibility:
    Maintains ``amount`` and ``balance`` per budget line item.  The balance
    is always re-derived as ``amount - sum(approved expenditures)`` from the
    full set of approved expenditures; it is never decremented in place, so
    concurrent approvals and retried operations cannot drift it.

Architecture position:
    Kernel > Services.  Called by BudgetStore (allocation, recalculation on
    edits), ExpenditureGate (reserve, debit, recalculate) and the
    utilization selector.

Invariants enforced:
    BALANCE_NON_NEGATIVE -- ``debit`` locks the line-item row with
        ``SELECT ... FOR UPDATE`` for the rest of the transaction and raises
        InsufficientBalanceError if the recomputed balance is negative.
        Concurrent approvals against the same line item are serialized.

Failure modes:
    - ValidationError: negative allocation.
    - InsufficientBalanceError: reservation or debit exceeds the balance.
    - LineItemNotFoundError: unknown or deleted line item.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from budget_kernel.domain.approval import ApprovalStatus
from budget_kernel.domain.utilization import (
    BudgetUtilization,
    LineItemUtilization,
    classify,
    raw_percentage,
    utilization_percentage,
)
from budget_kernel.exceptions import (
    InsufficientBalanceError,
    LineItemNotFoundError,
    ValidationError,
)
from budget_kernel.logging_config import get_logger
from budget_kernel.models import BudgetLineItem, Expenditure
from budget_kernel.services.base import BaseService

logger = get_logger("services.ledger")

ZERO = Decimal("0")


class Ledger(BaseService):
    """
    Owner of line-item balances.

    Guarantees:
        - After ``debit`` or ``recalculate`` returns, the line item's balance
          equals amount minus the approved-expenditure sum.
        - ``debit`` is idempotent: calling it twice with the same approved
          set yields the same balance.
        - ``reserve`` never mutates.
    """

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def get_line_item(self, line_item_id: UUID, *, for_update: bool = False) -> BudgetLineItem:
        stmt = select(BudgetLineItem).where(
            BudgetLineItem.id == line_item_id,
            BudgetLineItem.deleted_at.is_(None),
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        line_item = self.session.execute(stmt).scalar_one_or_none()
        if line_item is None:
            raise LineItemNotFoundError(str(line_item_id))
        return line_item

    def approved_total(self, line_item_id: UUID) -> Decimal:
        """Sum of approved, non-deleted expenditures against the line item."""
        total = self.session.execute(
            select(func.coalesce(func.sum(Expenditure.amount), 0)).where(
                Expenditure.line_item_id == line_item_id,
                Expenditure.status == ApprovalStatus.APPROVED.value,
                Expenditure.deleted_at.is_(None),
            )
        ).scalar_one()
        return Decimal(total)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def allocate(self, line_item: BudgetLineItem, amount: Decimal) -> BudgetLineItem:
        """
        Set a new line item's allocation; its balance starts equal to it.

        Raises:
            ValidationError: If amount < 0.
        """
        if amount < ZERO:
            raise ValidationError(
                f"Line item {line_item.code} amount cannot be negative: {amount}",
                field="amount",
            )
        line_item.amount = amount
        line_item.balance = amount
        return line_item

    def reserve(self, line_item_id: UUID, amount: Decimal) -> Decimal:
        """
        Optimistic check that ``amount`` fits within the current balance.

        Does not mutate.  The authoritative check is ``debit``.

        Returns:
            The available balance.

        Raises:
            InsufficientBalanceError: If amount > balance.
        """
        line_item = self.get_line_item(line_item_id)
        if amount > line_item.balance:
            logger.info(
                "ledger_reserve_rejected",
                extra={
                    "line_item_id": str(line_item_id),
                    "requested": str(amount),
                    "available": str(line_item.balance),
                },
            )
            raise InsufficientBalanceError(
                line_item_id=str(line_item_id),
                requested=amount,
                available=line_item.balance,
            )
        return line_item.balance

    def debit(self, line_item_id: UUID, amount: Decimal | None = None) -> BudgetLineItem:
        """
        Re-derive the balance from the approved set under a row lock.

        Call after the expenditure being approved has been flushed with
        status ``approved``; the recomputation then includes it.

        Args:
            line_item_id: Line item to recompute.
            amount: The amount being approved, reported in the error if the
                recomputed balance is negative.

        Raises:
            InsufficientBalanceError: If amount - approved < 0.
        """
        line_item = self.get_line_item(line_item_id, for_update=True)
        approved = self.approved_total(line_item_id)
        new_balance = line_item.amount - approved

        if new_balance < ZERO:
            available = line_item.amount - (approved - (amount or ZERO))
            logger.warning(
                "ledger_debit_rejected",
                extra={
                    "line_item_id": str(line_item_id),
                    "amount": str(line_item.amount),
                    "approved_total": str(approved),
                },
            )
            raise InsufficientBalanceError(
                line_item_id=str(line_item_id),
                requested=amount if amount is not None else approved,
                available=max(available, ZERO),
            )

        line_item.balance = new_balance
        self.session.flush()
        logger.info(
            "ledger_debited",
            extra={
                "line_item_id": str(line_item_id),
                "approved_total": str(approved),
                "balance": str(new_balance),
            },
        )
        return line_item

    def recalculate(self, line_item_id: UUID) -> BudgetLineItem:
        """
        Re-derive the balance after approved spend shrank (rejection,
        deletion) or the allocation changed.

        Raises:
            InsufficientBalanceError: If the allocation no longer covers the
                approved spend.
        """
        line_item = self.get_line_item(line_item_id, for_update=True)
        approved = self.approved_total(line_item_id)
        if line_item.amount < approved:
            raise InsufficientBalanceError(
                line_item_id=str(line_item_id),
                requested=approved,
                available=line_item.amount,
            )
        line_item.balance = line_item.amount - approved
        self.session.flush()
        logger.debug(
            "ledger_recalculated",
            extra={"line_item_id": str(line_item_id), "balance": str(line_item.balance)},
        )
        return line_item

    # ------------------------------------------------------------------
    # Utilization
    # ------------------------------------------------------------------

    def utilization(self, line_item_id: UUID) -> LineItemUtilization:
        """Spent/amount percentage and warning level of one line item."""
        line_item = self.get_line_item(line_item_id)
        spent = self.approved_total(line_item_id)
        return LineItemUtilization.compute(line_item.id, line_item.code, line_item.amount, spent)

    def budget_utilization(self, budget_id: UUID) -> BudgetUtilization:
        """Utilization of every active line item plus the budget total."""
        line_items = self.session.execute(
            select(BudgetLineItem)
            .where(
                BudgetLineItem.budget_id == budget_id,
                BudgetLineItem.deleted_at.is_(None),
            )
            .order_by(BudgetLineItem.code)
        ).scalars().all()

        spent_by_item = dict(
            self.session.execute(
                select(Expenditure.line_item_id, func.sum(Expenditure.amount))
                .where(
                    Expenditure.budget_id == budget_id,
                    Expenditure.status == ApprovalStatus.APPROVED.value,
                    Expenditure.deleted_at.is_(None),
                )
                .group_by(Expenditure.line_item_id)
            ).all()
        )

        items = tuple(
            LineItemUtilization.compute(
                li.id, li.code, li.amount, Decimal(spent_by_item.get(li.id) or 0)
            )
            for li in line_items
        )
        total_amount = sum((i.amount for i in items), ZERO)
        total_spent = sum((i.spent for i in items), ZERO)
        return BudgetUtilization(
            budget_id=budget_id,
            total_amount=total_amount,
            total_spent=total_spent,
            total_balance=total_amount - total_spent,
            percentage=utilization_percentage(total_spent, total_amount),
            level=classify(raw_percentage(total_spent, total_amount)),
            line_items=items,
        )
