"""Read-only query selectors."""

from budget_kernel.selectors.base import BaseSelector
from budget_kernel.selectors.utilization_selector import UtilizationSelector, UtilizationWarning

__all__ = ["BaseSelector", "UtilizationSelector", "UtilizationWarning"]
