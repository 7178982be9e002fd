"""Pydantic schemas for validation and serialization."""

from petpulse.schemas.alert import (
    AcknowledgeRequest,
    AlertAcceptedResponse,
    AlertContext,
    AlertPayload,
    AlertResponse,
)
from petpulse.schemas.analysis import Activity, AnalysisResult
from petpulse.schemas.jobs import DigestJobMessage, VideoJobMessage

__all__ = [
    "AcknowledgeRequest",
    "Activity",
    "AlertAcceptedResponse",
    "AlertContext",
    "AlertPayload",
    "AlertResponse",
    "AnalysisResult",
    "DigestJobMessage",
    "VideoJobMessage",
]
