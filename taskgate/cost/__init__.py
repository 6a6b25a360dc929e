"""Cost estimation and budget enforcement."""

from taskgate.cost.estimate import CostEstimate, estimate_cost, parse_usage_cost
from taskgate.cost.tracker import BudgetTracker, CostRecord, CostSummary, CostTotals

__all__ = [
    "BudgetTracker",
    "CostEstimate",
    "CostRecord",
    "CostSummary",
    "CostTotals",
    "estimate_cost",
    "parse_usage_cost",
]
