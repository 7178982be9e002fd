"""Alert webhook payload schemas.

Defines the Pydantic models for alert events entering the escalation engine,
whether produced by the video workers or by external monitoring systems.

The free-form ``context`` object some producers attach is parsed once, at this
boundary, into ``AlertContext``. Business logic reads the resolved properties
(``resolved_severity_level``, ``indicators``, ``actions``) and never pokes at
raw JSON. The request body itself is kept unchanged for the Alert row's
audit copy (``raw_payload``).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from petpulse.models import AlertType, SeverityLevel


def _coerce_severity_level(value: Any) -> Any:
    """Normalize a severity level string; unknown levels become None."""
    if value is None or isinstance(value, SeverityLevel):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {level.value for level in SeverityLevel}:
            return normalized
        return None
    return value


class AlertContext(BaseModel):
    """Known optional fields carried in an alert's ``context`` object.

    Unknown keys are ignored here; they survive in ``AlertPayload.raw_payload``.
    """

    model_config = ConfigDict(extra="ignore")

    severity_level: SeverityLevel | None = None
    critical_indicators: list[str] | None = None
    recommended_actions: list[str] | None = None
    mood: str | None = None
    description: str | None = None

    @field_validator("severity_level", mode="before")
    @classmethod
    def normalize_severity_level(cls, v: Any) -> Any:
        return _coerce_severity_level(v)


class EvalMatch(BaseModel):
    """Legacy Grafana evaluation match."""

    value: float
    metric: str
    tags: dict[str, str] | None = None


class AlertPayload(BaseModel):
    """Alert event accepted by ``POST /alert`` and ``POST /alert/critical``.

    ``pet_id`` is accepted as an integer or a numeric string. ``alert_type``
    accepts both ``position_changes`` and ``position-changes`` spellings;
    anything outside AlertType is rejected.
    """

    model_config = ConfigDict(populate_by_name=True)

    _raw: dict[str, Any] | None = PrivateAttr(default=None)

    alert_id: str = Field(..., min_length=1, max_length=100)
    pet_id: int
    alert_type: AlertType
    severity: str = Field(..., max_length=20)
    message: str | None = None
    metric_value: float | None = None
    baseline_value: float | None = None
    deviation_factor: float | None = None
    video_id: str | None = None
    timestamp: datetime | None = None
    context: AlertContext | None = None
    # Legacy Grafana fields
    title: str | None = None
    state: str | None = None
    eval_matches: list[EvalMatch] | None = Field(default=None, alias="evalMatches")
    severity_level: SeverityLevel | None = None
    critical_indicators: list[str] | None = None
    recommended_actions: list[str] | None = None

    @field_validator("alert_type", mode="before")
    @classmethod
    def normalize_alert_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v

    @field_validator("severity_level", mode="before")
    @classmethod
    def normalize_severity_level(cls, v: Any) -> Any:
        return _coerce_severity_level(v)

    @property
    def resolved_severity_level(self) -> SeverityLevel:
        """Severity level from the payload, else its context, else LOW."""
        if self.severity_level is not None:
            return self.severity_level
        if self.context is not None and self.context.severity_level is not None:
            return self.context.severity_level
        return SeverityLevel.LOW

    @property
    def indicators(self) -> list[str] | None:
        if self.critical_indicators is not None:
            return self.critical_indicators
        return self.context.critical_indicators if self.context else None

    @property
    def actions(self) -> list[str] | None:
        if self.recommended_actions is not None:
            return self.recommended_actions
        return self.context.recommended_actions if self.context else None

    @property
    def description(self) -> str | None:
        """Human-readable description for notifications (context, then message)."""
        if self.context is not None and self.context.description:
            return self.context.description
        return self.message

    @classmethod
    def from_raw(cls, data: Any) -> "AlertPayload":
        """Validate a decoded request body and keep it for the audit copy.

        Raises:
            ValidationError: If the body is not a valid alert.
        """
        payload = cls.model_validate(data)
        if isinstance(data, dict):
            payload._raw = data
        return payload

    def raw_payload(self) -> dict[str, Any]:
        """The body as received, including unknown context keys.

        Payloads built in code (not from a request) fall back to the
        normalized dump.
        """
        if self._raw is not None:
            return self._raw
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AlertAcceptedResponse(BaseModel):
    """Response for an alert accepted into the engine's intake."""

    status: str = "queued"
    alert_id: str


class AcknowledgeRequest(BaseModel):
    """Body of ``POST /alerts/{id}/acknowledge``."""

    response: str | None = Field(default=None, max_length=2000)


class AlertResponse(BaseModel):
    """Alert as returned by the human-facing alert routes."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    pet_id: int
    alert_type: str
    severity: str
    severity_level: SeverityLevel
    message: str | None = None
    critical_indicators: list[str] | None = None
    recommended_actions: list[str] | None = None
    intervention_action: str | None = None
    intervention_time: datetime | None = None
    outcome: str | None = None
    notification_sent: bool
    notification_channels: list[str] | None = None
    user_notified_at: datetime | None = None
    user_acknowledged_at: datetime | None = None
    user_response: str | None = None
    created_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        return str(v) if v is not None else v
