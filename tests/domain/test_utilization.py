"""Utilization percentage and early-warning classification."""

from decimal import Decimal
from uuid import uuid4

import pytest

from budget_kernel.domain.utilization import (
    LineItemUtilization,
    UtilizationLevel,
    classify,
    utilization_percentage,
)


class TestUtilizationPercentage:
    def test_sixty_percent(self):
        assert utilization_percentage(Decimal("60000"), Decimal("100000")) == Decimal("60.00")

    def test_zero_allocation_is_zero_percent(self):
        assert utilization_percentage(Decimal("0"), Decimal("0")) == Decimal("0.00")

    def test_rounds_half_up_to_two_places(self):
        # 1/3 = 33.333...
        assert utilization_percentage(Decimal("1"), Decimal("3")) == Decimal("33.33")
        # 2/3 = 66.666...
        assert utilization_percentage(Decimal("2"), Decimal("3")) == Decimal("66.67")


class TestClassify:
    @pytest.mark.parametrize(
        "pct, expected",
        [
            ("0", UtilizationLevel.NORMAL),
            ("74.99", UtilizationLevel.NORMAL),
            ("75", UtilizationLevel.MEDIUM),
            ("84.99", UtilizationLevel.MEDIUM),
            ("85", UtilizationLevel.HIGH),
            ("94.99", UtilizationLevel.HIGH),
            ("95", UtilizationLevel.CRITICAL),
            ("100", UtilizationLevel.CRITICAL),
        ],
    )
    def test_threshold_boundaries(self, pct, expected):
        assert classify(Decimal(pct)) is expected

    def test_levels_are_ordered(self):
        ranks = [level.rank for level in UtilizationLevel]
        assert ranks == sorted(ranks)
        assert UtilizationLevel.CRITICAL.rank > UtilizationLevel.NORMAL.rank


class TestLineItemUtilization:
    def test_compute(self):
        usage = LineItemUtilization.compute(uuid4(), "LI-1", Decimal("1000"), Decimal("900"))
        assert usage.balance == Decimal("100")
        assert usage.percentage == Decimal("90.00")
        assert usage.level is UtilizationLevel.HIGH

    @pytest.mark.parametrize(
        "spent, shown, expected",
        [
            ("94996", "95.00", UtilizationLevel.HIGH),
            ("84996", "85.00", UtilizationLevel.MEDIUM),
            ("74996", "75.00", UtilizationLevel.NORMAL),
        ],
    )
    def test_just_below_threshold_is_not_promoted(self, spent, shown, expected):
        usage = LineItemUtilization.compute(uuid4(), "LI-1", Decimal("100000"), Decimal(spent))
        # Displayed value rounds up to the threshold; the level does not.
        assert usage.percentage == Decimal(shown)
        assert usage.level is expected
