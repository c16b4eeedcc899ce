"""Daily task materialization from active plans."""

from taskflow.materialization.engine import MaterializationPlan, compute_materialization
from taskflow.materialization.service import MaterializationResult, materialize_today

__all__ = [
    "MaterializationPlan",
    "MaterializationResult",
    "compute_materialization",
    "materialize_today",
]
