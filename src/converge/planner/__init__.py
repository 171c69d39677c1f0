from .models import Action, AttributeChange, Plan, PlanMetadata, PlanStep
from .planner import Planner, plan_summary_line

__all__ = [
    "Action",
    "AttributeChange",
    "Plan",
    "PlanMetadata",
    "PlanStep",
    "Planner",
    "plan_summary_line",
]
