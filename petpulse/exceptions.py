"""Shared exceptions for the application.

This module contains exception classes used across workers, clients and the
escalation engine to avoid cross-domain dependencies between modules.

Error categories:
    - Transient infrastructure errors (BlobFetchError, AnalysisError) are
      retried by the video worker up to the fixed retry cap.
    - Malformed input (MalformedJobError, StorageURIError) is dropped or
      marked terminal immediately, never retried.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from petpulse.models import VideoStatus


class ConfigurationError(Exception):
    """Raised when required configuration is missing.

    Example: the analysis client is constructed without GEMINI_API_KEY.
    """

    pass


class InvalidStateTransitionError(Exception):
    """Raised when attempting an invalid VideoJob status transition.

    Only transitions listed in PetVideo.VALID_TRANSITIONS are allowed.

    Attributes:
        from_status: The current VideoStatus before the attempted transition.
        to_status: The VideoStatus that was attempted but is not valid.

    Example:
        >>> video.status = VideoStatus.FAILED
        >>> video.status = VideoStatus.PROCESSING  # FAILED is terminal
        InvalidStateTransitionError: Invalid transition: FAILED → PROCESSING
    """

    def __init__(self, message: str, from_status: "VideoStatus", to_status: "VideoStatus"):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message)

    def __str__(self) -> str:
        base_message = super().__str__()
        return f"{base_message} (from={self.from_status.value}, to={self.to_status.value})"


class MalformedJobError(ValueError):
    """Raised for queue payloads that can never succeed (bad JSON, UUID, date).

    Malformed jobs are logged and discarded; they are never requeued.
    """

    pass


class StorageURIError(MalformedJobError):
    """Raised when a storage path is not of the form ``scheme://bucket/key``."""

    def __init__(self, uri: str):
        self.uri = uri
        super().__init__(f"Invalid storage URI: {uri!r}")


class BlobFetchError(Exception):
    """Raised when a stored clip cannot be downloaded."""

    def __init__(self, bucket: str, key: str, reason: str):
        self.bucket = bucket
        self.key = key
        self.reason = reason
        super().__init__(f"Failed to fetch {bucket}/{key}: {reason}")


class AnalysisError(Exception):
    """Raised when the analysis service fails to produce a usable result.

    Covers upload failures, a FAILED file state, poll timeouts, blocked or
    empty responses, and unparseable JSON.
    """

    pass


class NotificationError(Exception):
    """Raised by a notification channel when a send is rejected or fails."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} notification failed: {reason}")
