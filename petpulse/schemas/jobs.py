"""Queue message schemas.

Video job:  ``{"video_id": "<uuid>", "trace_context"?: {...}}``
Digest job: ``{"pet_id": <int>, "date": "YYYY-MM-DD"}``

Messages are serialized as UTF-8 JSON bytes into the PgQueuer payload column.
``parse`` raises MalformedJobError for anything that cannot be decoded, so the
handlers can discard it without a retry.
"""

import datetime as dt
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError

from petpulse.exceptions import MalformedJobError

MessageT = TypeVar("MessageT", bound="JobMessage")


class JobMessage(BaseModel):
    """Base class for queue messages."""

    def to_bytes(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def parse(cls: type[MessageT], payload: bytes | str | None) -> MessageT:
        """Decode a raw queue payload.

        Raises:
            MalformedJobError: If the payload is empty, not JSON, or invalid.
        """
        if not payload:
            raise MalformedJobError(f"Empty {cls.__name__} payload")
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise MalformedJobError(f"Invalid {cls.__name__} payload: {e}") from e


class VideoJobMessage(JobMessage):
    video_id: UUID
    trace_context: dict[str, Any] | None = None


class DigestJobMessage(JobMessage):
    pet_id: int
    date: dt.date
