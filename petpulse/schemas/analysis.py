"""Structured analysis result returned by the video-understanding service.

The service is prompted to return JSON with the keys below. Missing optional
keys take their defaults; ``severity_level`` defaults to ``low`` and unknown
levels are treated as ``low``. The level string as reported (e.g. ``info``)
is kept in ``reported_severity`` for the legacy alert severity mapping.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from petpulse.models import SeverityLevel


class Activity(BaseModel):
    """One behavior segment within a clip."""

    model_config = ConfigDict(extra="allow")

    activity: str = ""
    mood: str = ""
    description: str = ""
    starttime: str = ""
    endtime: str = ""
    duration: str = ""


class AnalysisResult(BaseModel):
    """Typed view of one clip's analysis."""

    model_config = ConfigDict(extra="allow")

    activities: list[Activity] = Field(default_factory=list)
    is_unusual: bool = False
    summary_mood: str | None = None
    summary_description: str | None = None
    severity_level: SeverityLevel = SeverityLevel.LOW
    critical_indicators: list[str] | None = None
    recommended_actions: list[str] | None = None
    reported_severity: str | None = None

    @model_validator(mode="before")
    @classmethod
    def keep_reported_severity(cls, data: Any) -> Any:
        if isinstance(data, dict) and "reported_severity" not in data:
            raw = data.get("severity_level")
            if isinstance(raw, str):
                data = {**data, "reported_severity": raw.strip().lower()}
        return data

    @field_validator("severity_level", mode="before")
    @classmethod
    def default_unknown_level(cls, v: Any) -> Any:
        if v is None:
            return SeverityLevel.LOW
        if isinstance(v, str):
            normalized = v.strip().lower()
            if normalized in {level.value for level in SeverityLevel}:
                return normalized
            return SeverityLevel.LOW
        return v

    @property
    def is_critical(self) -> bool:
        return self.severity_level is SeverityLevel.CRITICAL

    def activities_json(self) -> list[dict[str, Any]]:
        """Activities as plain dicts for the JSON column."""
        return [activity.model_dump() for activity in self.activities]
