"""Escalation engine services."""

from petpulse.services.comfort_loop import AlertIntake, AlertOutcome, ComfortLoop
from petpulse.services.intervention import (
    Intervention,
    InterventionKind,
    NotificationLevel,
    decide_intervention,
    final_autonomous_action,
)
from petpulse.services.quick_actions import QuickActionGenerator

__all__ = [
    "AlertIntake",
    "AlertOutcome",
    "ComfortLoop",
    "Intervention",
    "InterventionKind",
    "NotificationLevel",
    "QuickActionGenerator",
    "decide_intervention",
    "final_autonomous_action",
]
