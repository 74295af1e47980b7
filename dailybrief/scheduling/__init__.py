"""Pure scheduling decisions: no I/O, no clock reads."""

from dailybrief.scheduling.planner import PlannedDelivery, plan_batch
from dailybrief.scheduling.window import evaluate, minutes_from_target

__all__ = ["PlannedDelivery", "evaluate", "minutes_from_target", "plan_batch"]
