"""
BudgetStore -- budgets, their line items and aggregate consistency.

Responsibility:
    Creates, edits, soft-deletes and summarizes budgets.  Line items are
    created through the Ledger so their balances start at their
    allocations.  ``apply_changes`` is the single path that writes a
    budget's editable state; both ``update_budget`` and
    ``VersionControl.restore_version`` use it.

Invariants enforced:
    AGGREGATE_RECOMPUTE -- ``total_amount`` is recomputed as the sum of
        active line-item amounts after every line-item mutation.
    BALANCE_NON_NEGATIVE -- lowering a line item's amount below its
        approved spend raises InsufficientBalanceError (via Ledger).

Failure modes:
    - ValidationError: bad date range, negative amount, duplicate line
      codes, unknown category, attempt to move a budget between units or
      fiscal years.
    - DuplicateBudgetCodeError: (org unit, code, fiscal year) exists.
    - InvalidStateError: edit while the budget is awaiting approval.
    - ConflictError: delete with non-draft expenditures; removal of a line
      item that expenditures reference.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy import func, select

from budget_kernel.db.types import money_str, to_decimal
from budget_kernel.domain.approval import ApprovalStatus
from budget_kernel.domain.dtos import (
    BudgetSpec,
    BudgetSummaryRow,
    LineItemCategory,
    LineItemSpec,
    Quarter,
)
from budget_kernel.domain.utilization import utilization_percentage
from budget_kernel.exceptions import (
    BudgetNotFoundError,
    ConflictError,
    DuplicateBudgetCodeError,
    InvalidStateError,
    ValidationError,
)
from budget_kernel.logging_config import get_logger
from budget_kernel.models import Budget, BudgetLineItem, Expenditure
from budget_kernel.services.base import BaseService
from budget_kernel.services.ledger_service import Ledger

logger = get_logger("services.budget")

ZERO = Decimal("0")

# Budget fields a caller may edit directly.
EDITABLE_BUDGET_FIELDS = frozenset({"code", "title", "description", "start_date", "end_date"})

# Fields fixed at creation.
IMMUTABLE_BUDGET_FIELDS = frozenset({"org_unit_id", "fiscal_year"})


def parse_date(value: Any, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"{field} is not an ISO date: {value!r}", field=field) from exc


def _validate_date_range(start: date, end: date) -> None:
    if end <= start:
        raise ValidationError(
            f"end_date {end} must be after start_date {start}", field="end_date"
        )


def _normalize_line_item(raw: Mapping[str, Any] | LineItemSpec) -> dict[str, Any]:
    """Validate one proposed line item and return it as plain values."""
    if isinstance(raw, LineItemSpec):
        raw = raw.to_payload()
    code = (raw.get("code") or "").strip()
    if not code:
        raise ValidationError("Line item code is required", field="code")
    name = (raw.get("name") or "").strip()
    if not name:
        raise ValidationError(f"Line item {code} name is required", field="name")
    try:
        category = LineItemCategory(raw.get("category")).value
    except ValueError as exc:
        raise ValidationError(
            f"Line item {code} has unknown category {raw.get('category')!r}",
            field="category",
        ) from exc
    quarter = raw.get("quarter")
    if quarter is not None:
        try:
            quarter = Quarter(quarter).value
        except ValueError as exc:
            raise ValidationError(
                f"Line item {code} has unknown quarter {quarter!r}", field="quarter"
            ) from exc
    try:
        amount = to_decimal(raw.get("amount"))
    except ValueError as exc:
        raise ValidationError(str(exc), field="amount") from exc
    if amount < ZERO:
        raise ValidationError(
            f"Line item {code} amount cannot be negative: {amount}", field="amount"
        )
    return {
        "code": code,
        "name": name,
        "description": raw.get("description"),
        "category": category,
        "quarter": quarter,
        "amount": amount,
    }


def _normalize_line_items(items: Iterable[Any]) -> list[dict[str, Any]]:
    normalized = [_normalize_line_item(item) for item in items]
    codes = [item["code"] for item in normalized]
    duplicates = sorted({c for c in codes if codes.count(c) > 1})
    if duplicates:
        raise ValidationError(
            f"Duplicate line item codes: {', '.join(duplicates)}", field="line_items"
        )
    return normalized


class BudgetStore(BaseService):
    """
    CRUD and aggregate consistency for Budget and its line items.

    Non-goals:
        - Does NOT decide who may edit (authorization is external).
        - Does NOT create versions; callers pair edits with
          VersionControl.create_version when a revision should be recorded.
    """

    def __init__(self, session, clock=None, ledger: Ledger | None = None):
        super().__init__(session, clock)
        self.ledger = ledger or Ledger(session, self.clock)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_budget(self, budget_id: UUID, *, for_update: bool = False) -> Budget:
        stmt = select(Budget).where(Budget.id == budget_id, Budget.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        budget = self.session.execute(stmt).scalar_one_or_none()
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        return budget

    def list_line_items(self, budget_id: UUID) -> list[BudgetLineItem]:
        self.get_budget(budget_id)
        return list(
            self.session.execute(
                select(BudgetLineItem)
                .where(
                    BudgetLineItem.budget_id == budget_id,
                    BudgetLineItem.deleted_at.is_(None),
                )
                .order_by(BudgetLineItem.code)
            ).scalars()
        )

    def capture_state(self, budget: Budget) -> dict[str, Any]:
        """JSON-safe copy of the budget's editable state and line items."""
        return {
            "code": budget.code,
            "title": budget.title,
            "description": budget.description,
            "org_unit_id": str(budget.org_unit_id),
            "fiscal_year": budget.fiscal_year,
            "start_date": budget.start_date.isoformat(),
            "end_date": budget.end_date.isoformat(),
            "total_amount": money_str(budget.total_amount),
            "line_items": [
                {
                    "code": li.code,
                    "name": li.name,
                    "description": li.description,
                    "category": li.category,
                    "quarter": li.quarter,
                    "amount": money_str(li.amount),
                }
                for li in sorted(budget.active_line_items, key=lambda li: li.code)
            ],
        }

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _ensure_code_available(
        self, org_unit_id: UUID, code: str, fiscal_year: int, exclude_id: UUID | None = None
    ) -> None:
        stmt = select(Budget.id).where(
            Budget.org_unit_id == org_unit_id,
            Budget.code == code,
            Budget.fiscal_year == fiscal_year,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        if self.session.execute(stmt).first() is not None:
            raise DuplicateBudgetCodeError(code, str(org_unit_id), fiscal_year)

    def create_budget(self, spec: BudgetSpec, actor_id: UUID) -> Budget:
        """
        Create a draft budget and its line items in one unit.

        Raises:
            ValidationError: end_date <= start_date, negative or malformed
                line items.
            DuplicateBudgetCodeError: code already used for the unit/year.
        """
        code = (spec.code or "").strip()
        title = (spec.title or "").strip()
        if not code:
            raise ValidationError("Budget code is required", field="code")
        if not title:
            raise ValidationError("Budget title is required", field="title")
        _validate_date_range(spec.start_date, spec.end_date)
        items = _normalize_line_items(spec.line_items)
        self._ensure_code_available(spec.org_unit_id, code, spec.fiscal_year)

        budget = Budget(
            code=code,
            title=title,
            description=spec.description,
            org_unit_id=spec.org_unit_id,
            fiscal_year=spec.fiscal_year,
            start_date=spec.start_date,
            end_date=spec.end_date,
            status=ApprovalStatus.DRAFT.value,
            total_amount=ZERO,
            created_by_id=actor_id,
        )
        self.session.add(budget)
        for item in items:
            self._add_line_item(budget, item, actor_id)
        self.recompute_total(budget)
        self.session.flush()

        logger.info(
            "budget_created",
            extra={
                "budget_id": str(budget.id),
                "code": budget.code,
                "fiscal_year": budget.fiscal_year,
                "line_item_count": len(items),
                "total_amount": str(budget.total_amount),
            },
        )
        return budget

    def _add_line_item(self, budget: Budget, item: dict[str, Any], actor_id: UUID) -> BudgetLineItem:
        line_item = BudgetLineItem(
            budget=budget,
            code=item["code"],
            name=item["name"],
            description=item["description"],
            category=item["category"],
            quarter=item["quarter"],
            fiscal_year=budget.fiscal_year,
            created_by_id=actor_id,
        )
        # Setting the backref alone does not cascade the item into the session.
        self.session.add(line_item)
        self.ledger.allocate(line_item, item["amount"])
        return line_item

    def recompute_total(self, budget: Budget) -> Decimal:
        budget.total_amount = sum((li.amount for li in budget.active_line_items), ZERO)
        return budget.total_amount

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_budget(self, budget_id: UUID, changes: Mapping[str, Any], actor_id: UUID) -> Budget:
        """
        Edit scalar fields and/or replace the line-item set.

        ``changes["line_items"]``, when present, is the complete new set of
        line items matched by code: existing codes are updated, new codes
        are added, and missing codes are removed.

        Raises:
            InvalidStateError: budget is submitted for approval.
            ValidationError: unknown field, immutable field changed, bad
                values.
        """
        unknown = set(changes) - EDITABLE_BUDGET_FIELDS - IMMUTABLE_BUDGET_FIELDS - {"line_items"}
        if unknown:
            raise ValidationError(
                f"Unknown budget fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        budget = self.get_budget(budget_id, for_update=True)
        self.ensure_editable(budget, "update")
        self.apply_changes(budget, changes, actor_id)
        logger.info(
            "budget_updated",
            extra={
                "budget_id": str(budget.id),
                "fields": sorted(set(changes)),
                "total_amount": str(budget.total_amount),
            },
        )
        return budget

    def ensure_editable(self, budget: Budget, action: str) -> None:
        if budget.status == ApprovalStatus.SUBMITTED.value:
            raise InvalidStateError(
                entity_type="budget",
                entity_id=str(budget.id),
                current_status=budget.status,
                action=action,
                message=f"Budget {budget.id} is awaiting approval and cannot be changed",
            )

    def apply_changes(self, budget: Budget, changes: Mapping[str, Any], actor_id: UUID) -> Budget:
        """
        Write editable state onto ``budget``.  Keys outside the editable set
        (e.g. ``total_amount``, restore metadata) are ignored.
        """
        for field in IMMUTABLE_BUDGET_FIELDS & set(changes):
            current = getattr(budget, field)
            if str(changes[field]) != str(current):
                raise ValidationError(
                    f"Budget {field} cannot be changed (is {current}, got {changes[field]})",
                    field=field,
                )

        if "code" in changes:
            new_code = (changes["code"] or "").strip()
            if not new_code:
                raise ValidationError("Budget code is required", field="code")
            if new_code != budget.code:
                self._ensure_code_available(
                    budget.org_unit_id, new_code, budget.fiscal_year, exclude_id=budget.id
                )
                budget.code = new_code
        if "title" in changes:
            title = (changes["title"] or "").strip()
            if not title:
                raise ValidationError("Budget title is required", field="title")
            budget.title = title
        if "description" in changes:
            budget.description = changes["description"]

        start = parse_date(changes.get("start_date", budget.start_date), "start_date")
        end = parse_date(changes.get("end_date", budget.end_date), "end_date")
        _validate_date_range(start, end)
        budget.start_date, budget.end_date = start, end

        if changes.get("line_items") is not None:
            self._replace_line_items(budget, _normalize_line_items(changes["line_items"]), actor_id)

        self.recompute_total(budget)
        budget.updated_by_id = actor_id
        self.session.flush()
        return budget

    def _replace_line_items(self, budget: Budget, items: list[dict[str, Any]], actor_id: UUID) -> None:
        now = self.clock.now()
        existing = {li.code: li for li in budget.line_items}
        wanted = {item["code"] for item in items}

        for line_item in list(existing.values()):
            if line_item.deleted_at is None and line_item.code not in wanted:
                self._remove_line_item(line_item, actor_id, now)

        for item in items:
            line_item = existing.get(item["code"])
            if line_item is None:
                self._add_line_item(budget, item, actor_id)
                continue
            line_item.deleted_at = None
            line_item.name = item["name"]
            line_item.description = item["description"]
            line_item.category = item["category"]
            line_item.quarter = item["quarter"]
            line_item.updated_by_id = actor_id
            if line_item.amount != item["amount"]:
                line_item.amount = item["amount"]
                self.session.flush()
                self.ledger.recalculate(line_item.id)

    def _remove_line_item(self, line_item: BudgetLineItem, actor_id: UUID, now) -> None:
        referenced = self.session.execute(
            select(func.count(Expenditure.id)).where(
                Expenditure.line_item_id == line_item.id,
                Expenditure.deleted_at.is_(None),
            )
        ).scalar_one()
        if referenced:
            raise ConflictError(
                "budget_line_item",
                str(line_item.id),
                f"line item {line_item.code} has {referenced} expenditure(s) and cannot be removed",
            )
        line_item.deleted_at = now
        line_item.updated_by_id = actor_id

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_budget(self, budget_id: UUID, actor_id: UUID) -> Budget:
        """
        Soft-delete a budget, its line items and its draft expenditures.

        Raises:
            ConflictError: any non-draft expenditure exists.
        """
        budget = self.get_budget(budget_id, for_update=True)
        blocking = self.session.execute(
            select(func.count(Expenditure.id)).where(
                Expenditure.budget_id == budget_id,
                Expenditure.status != ApprovalStatus.DRAFT.value,
                Expenditure.deleted_at.is_(None),
            )
        ).scalar_one()
        if blocking:
            raise ConflictError(
                "budget",
                str(budget_id),
                f"budget has {blocking} non-draft expenditure(s) and cannot be deleted",
            )

        now = self.clock.now()
        drafts = self.session.execute(
            select(Expenditure).where(
                Expenditure.budget_id == budget_id,
                Expenditure.deleted_at.is_(None),
            )
        ).scalars()
        for expenditure in drafts:
            expenditure.deleted_at = now
            expenditure.updated_by_id = actor_id
        for line_item in budget.active_line_items:
            line_item.deleted_at = now
            line_item.updated_by_id = actor_id
        budget.deleted_at = now
        budget.updated_by_id = actor_id
        self.session.flush()

        logger.info("budget_deleted", extra={"budget_id": str(budget_id)})
        return budget

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary(
        self,
        org_unit_id: UUID | None = None,
        fiscal_year: int | None = None,
    ) -> list[BudgetSummaryRow]:
        """
        Budgeted vs spent per (org unit, fiscal year).

        Spent is summed from approved expenditures at query time, never read
        from a stored running total.
        """
        budget_filters = [Budget.deleted_at.is_(None)]
        if org_unit_id is not None:
            budget_filters.append(Budget.org_unit_id == org_unit_id)
        if fiscal_year is not None:
            budget_filters.append(Budget.fiscal_year == fiscal_year)

        budgeted_rows = self.session.execute(
            select(
                Budget.org_unit_id,
                Budget.fiscal_year,
                func.count(Budget.id),
                func.coalesce(func.sum(Budget.total_amount), 0),
            )
            .where(*budget_filters)
            .group_by(Budget.org_unit_id, Budget.fiscal_year)
        ).all()

        spent_rows = self.session.execute(
            select(
                Budget.org_unit_id,
                Budget.fiscal_year,
                func.coalesce(func.sum(Expenditure.amount), 0),
            )
            .join(Expenditure, Expenditure.budget_id == Budget.id)
            .where(
                *budget_filters,
                Expenditure.status == ApprovalStatus.APPROVED.value,
                Expenditure.deleted_at.is_(None),
            )
            .group_by(Budget.org_unit_id, Budget.fiscal_year)
        ).all()
        spent = {(unit, year): Decimal(total) for unit, year, total in spent_rows}

        rows = []
        for unit, year, count, budgeted in budgeted_rows:
            budgeted = Decimal(budgeted)
            total_spent = spent.get((unit, year), ZERO)
            rows.append(
                BudgetSummaryRow(
                    org_unit_id=unit,
                    fiscal_year=year,
                    budget_count=count,
                    total_budgeted=budgeted,
                    total_spent=total_spent,
                    available=budgeted - total_spent,
                    utilization_percentage=utilization_percentage(total_spent, budgeted),
                )
            )
        rows.sort(key=lambda r: (str(r.org_unit_id), r.fiscal_year))
        return rows
