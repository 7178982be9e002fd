"""PetPulse processing pipeline and alert escalation engine.

This package contains the asynchronous job pipeline that turns uploaded pet
clips into behavior analyses and daily digests, and the ComfortLoop engine that
escalates alerts into interventions and owner/contact notifications.
"""

from petpulse.database import async_session_factory, get_session
from petpulse.models import Alert, Base, DailyDigest, PetVideo, VideoStatus

__all__ = [
    "Alert",
    "Base",
    "DailyDigest",
    "PetVideo",
    "VideoStatus",
    "async_session_factory",
    "get_session",
]
