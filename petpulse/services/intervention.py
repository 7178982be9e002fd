"""Intervention decision table for the escalation engine.

Interventions escalate with the number of same-type alerts for a pet inside
the escalation window (the current alert included):

    | count | pacing/restlessness | vocalization/attention | unusual_behavior | other            |
    |-------|---------------------|------------------------|------------------|------------------|
    | 1-2   | dim-lights          | play-calming-music     | play-calming-music | log-only       |
    | 3     | play-owner-voice    | dispense-treat         | play-owner-voice | play-owner-voice |
    | 4     | notify-user(standard), plus play-owner-voice as a final autonomous action |
    | 5+    | notify-user(standard)                                                       |

Critical severity bypasses the table: notify-user(critical).

The 4th-alert composite is the one place two actions happen for one alert.
It is kept out of the single-choice ``decide_intervention`` and exposed as
``final_autonomous_action`` so callers run it explicitly.
"""

import enum
from dataclasses import dataclass

from petpulse.models import AlertType, SeverityLevel


class InterventionKind(enum.Enum):
    DIM_LIGHTS = "dim-lights"
    PLAY_CALMING_MUSIC = "play-calming-music"
    PLAY_OWNER_VOICE = "play-owner-voice"
    DISPENSE_TREAT = "dispense-treat"
    NOTIFY_USER = "notify-user"
    LOG_ONLY = "log-only"


class NotificationLevel(enum.Enum):
    STANDARD = "standard"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Intervention:
    kind: InterventionKind
    level: NotificationLevel | None = None

    @property
    def label(self) -> str:
        """Recorded form, e.g. ``dim-lights`` or ``notify-user(standard)``."""
        if self.level is not None:
            return f"{self.kind.value}({self.level.value})"
        return self.kind.value


DIM_LIGHTS = Intervention(InterventionKind.DIM_LIGHTS)
PLAY_CALMING_MUSIC = Intervention(InterventionKind.PLAY_CALMING_MUSIC)
PLAY_OWNER_VOICE = Intervention(InterventionKind.PLAY_OWNER_VOICE)
DISPENSE_TREAT = Intervention(InterventionKind.DISPENSE_TREAT)
LOG_ONLY = Intervention(InterventionKind.LOG_ONLY)
NOTIFY_STANDARD = Intervention(InterventionKind.NOTIFY_USER, NotificationLevel.STANDARD)
NOTIFY_CRITICAL = Intervention(InterventionKind.NOTIFY_USER, NotificationLevel.CRITICAL)

# Alert count at which the owner is first notified
OWNER_NOTIFICATION_COUNT = 4
# Alert count at which severity is forced to high
ESCALATION_OVERRIDE_COUNT = 5

_MOVEMENT = {AlertType.PACING, AlertType.RESTLESSNESS}
_VOCAL = {AlertType.VOCALIZATION, AlertType.ATTENTION_SEEKING}
_SOOTHABLE = {AlertType.VOCALIZATION, AlertType.ATTENTION_SEEKING, AlertType.UNUSUAL_BEHAVIOR}


def escalate_severity(severity_level: SeverityLevel, count: int) -> SeverityLevel:
    """Force HIGH once a symptom recurs ESCALATION_OVERRIDE_COUNT times, unless critical."""
    if count >= ESCALATION_OVERRIDE_COUNT and severity_level is not SeverityLevel.CRITICAL:
        return SeverityLevel.HIGH
    return severity_level


def decide_intervention(
    alert_type: AlertType, count: int, severity_level: SeverityLevel
) -> Intervention:
    """Pick the single recorded intervention for an alert."""
    if severity_level is SeverityLevel.CRITICAL:
        return NOTIFY_CRITICAL

    if count <= 2:
        if alert_type in _MOVEMENT:
            return DIM_LIGHTS
        if alert_type in _SOOTHABLE:
            return PLAY_CALMING_MUSIC
        return LOG_ONLY

    if count == 3:
        if alert_type in _VOCAL:
            return DISPENSE_TREAT
        return PLAY_OWNER_VOICE

    return NOTIFY_STANDARD


def final_autonomous_action(count: int, severity_level: SeverityLevel) -> Intervention | None:
    """Autonomous action executed alongside the 4th alert's owner notification."""
    if count == OWNER_NOTIFICATION_COUNT and severity_level is not SeverityLevel.CRITICAL:
        return PLAY_OWNER_VOICE
    return None
