"""SQLAlchemy 2.0 ORM models.

This module contains all SQLAlchemy models for the pipeline and the escalation
engine. All models use the Mapped[type] annotation pattern required by
SQLAlchemy 2.0.

Ownership:
    - PetVideo (the VideoJob) and DailyDigest are owned by the processing
      pipeline.
    - Alert and QuickAction are owned by the escalation engine, readable and
      updatable by the human acknowledgement routes.
    - User, Pet and EmergencyContact are read-only reference data here; their
      CRUD lives in the account service.
"""

import datetime as dt
import enum
import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from petpulse.exceptions import InvalidStateTransitionError

# A job is analyzed at most 1 + MAX_VIDEO_RETRIES times before FAILED.
MAX_VIDEO_RETRIES = 2


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def utc_date(value: datetime) -> date:
    """Calendar date of ``value`` in UTC. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(timezone.utc).date()


class VideoStatus(enum.Enum):
    """Lifecycle of a video analysis job.

    Flow:
        PENDING → PROCESSING → PROCESSED
        PROCESSING → RETRYING → PROCESSING (at most MAX_VIDEO_RETRIES times)
        PROCESSING → FAILED (retries exhausted, or unrecoverable input)

    Terminal States:
        PROCESSED, FAILED
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    RETRYING = "RETRYING"
    FAILED = "FAILED"


class SeverityLevel(enum.Enum):
    """Four-tier severity classification driving escalation and notification."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(enum.Enum):
    """Closed set of alert types accepted by the escalation engine."""

    # Behavioral alerts
    PACING = "pacing"
    VOCALIZATION = "vocalization"
    POSITION_CHANGES = "position_changes"
    DOOR_PROXIMITY = "door_proximity"
    RESTLESSNESS = "restlessness"
    ATTENTION_SEEKING = "attention_seeking"
    # Worker-detected alerts
    UNUSUAL_BEHAVIOR = "unusual_behavior"
    PROCESSING_ERROR = "processing_error"
    QUEUE_DEPTH_HIGH = "queue_depth_high"
    # Generic fallback
    COMFORT = "comfort"


class QuickActionStatus(enum.Enum):
    """Delivery state of a quick action."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class User(Base):
    """Pet owner account (reference data for contact resolution)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    pets: Mapped[list["Pet"]] = relationship("Pet", back_populates="owner")
    emergency_contacts: Mapped[list["EmergencyContact"]] = relationship(
        "EmergencyContact", back_populates="user"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name={self.name!r})>"


class Pet(Base):
    """Monitored pet (reference data)."""

    __tablename__ = "pets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    owner: Mapped["User"] = relationship("User", back_populates="pets")

    def __repr__(self) -> str:
        return f"<Pet(id={self.id}, name={self.name!r}, user_id={self.user_id})>"


class PetVideo(Base):
    """Uploaded clip and its analysis job state (the VideoJob).

    Created on upload with status PENDING; mutated only by the video worker
    that currently owns it (and by the stuck-job reaper); never deleted here.

    Attributes:
        id: Opaque UUID, also the queue message identity.
        pet_id: Owning pet.
        file_path: Storage URI, ``scheme://bucket/key``.
        status: Job lifecycle (see VideoStatus).
        retry_count: Failed analysis attempts that were requeued (0..2).
        analysis_result: Raw structured analysis JSON (audit/debugging).
        activities: Activity list as returned by analysis.
        mood: Overall mood.
        description: Overall description.
        is_unusual: Whether analysis flagged the clip as unusual.
        severity_level: Analysis severity (low/medium/high/critical).
        created_at: Upload time; its UTC date keys the daily digest.
        updated_at: Last mutation; drives the stuck-job processing deadline.
    """

    __tablename__ = "pet_videos"

    VALID_TRANSITIONS = {
        VideoStatus.PENDING: [VideoStatus.PROCESSING],
        VideoStatus.RETRYING: [VideoStatus.PROCESSING],
        VideoStatus.PROCESSING: [
            VideoStatus.PROCESSED,
            VideoStatus.RETRYING,
            VideoStatus.FAILED,
        ],
        VideoStatus.PROCESSED: [],  # Terminal state
        VideoStatus.FAILED: [],  # Terminal state
    }

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    pet_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pets.id", ondelete="CASCADE"),
        nullable=False,
    )
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)

    status: Mapped[VideoStatus] = mapped_column(
        Enum(
            VideoStatus,
            native_enum=True,
            name="videostatus",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=VideoStatus.PENDING,
        index=True,
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    # Analysis output (folded into the job row)
    analysis_result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    activities: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    mood: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_unusual: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    severity_level: Mapped[str | None] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            f"retry_count >= 0 AND retry_count <= {MAX_VIDEO_RETRIES}",
            name="ck_pet_videos_retry_count_range",
        ),
        # Digest aggregation and resolution checks filter by pet + status
        Index("ix_pet_videos_pet_id_status", "pet_id", "status"),
    )

    @validates("status")
    def validate_status_change(self, key: str, value: VideoStatus) -> VideoStatus:
        """Enforce VALID_TRANSITIONS on every status assignment.

        Validation is skipped on initial creation (status is None).

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
        """
        if self.status is None:
            return value

        allowed_transitions = self.VALID_TRANSITIONS.get(self.status, [])
        if value not in allowed_transitions:
            raise InvalidStateTransitionError(
                f"Invalid transition: {self.status.value} → {value.value}",
                from_status=self.status,
                to_status=value,
            )

        return value

    @validates("retry_count")
    def validate_retry_count(self, key: str, value: int) -> int:
        if value < 0 or value > MAX_VIDEO_RETRIES:
            raise ValueError(f"retry_count must be within 0..{MAX_VIDEO_RETRIES}, got {value}")
        return value

    @property
    def can_retry(self) -> bool:
        """Whether a failed attempt may be requeued instead of failing terminally."""
        return (self.retry_count or 0) < MAX_VIDEO_RETRIES

    def __repr__(self) -> str:
        return (
            f"<PetVideo(id={self.id!s:.8}, pet_id={self.pet_id}, "
            f"status={self.status.value if self.status else None!r}, "
            f"retry_count={self.retry_count})>"
        )


class DailyDigest(Base):
    """Per-pet, per-calendar-day aggregate of analyzed clips.

    At most one row per (pet_id, date), enforced by a unique constraint and the
    digest worker's find-then-upsert. Re-aggregation overwrites, never appends.
    """

    __tablename__ = "daily_digests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    pet_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pets.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    moods: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    activities: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    unusual_events: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    total_videos: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (UniqueConstraint("pet_id", "date", name="uq_daily_digests_pet_id_date"),)

    def __repr__(self) -> str:
        return (
            f"<DailyDigest(pet_id={self.pet_id}, date={self.date!s}, "
            f"total_videos={self.total_videos})>"
        )


class Alert(Base):
    """Alert event and its escalation audit trail.

    Once persisted, ``id`` and ``created_at`` are immutable. Every other field
    is filled in progressively by the engine (intervention, notification,
    outcome) or by human acknowledgement.
    """

    __tablename__ = "alerts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    pet_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pets.id", ondelete="CASCADE"),
        nullable=False,
    )
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Legacy free-form severity string kept for older dashboards
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    severity_level: Mapped[SeverityLevel] = mapped_column(
        Enum(
            SeverityLevel,
            native_enum=True,
            name="severitylevel",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=SeverityLevel.LOW,
        index=True,
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    critical_indicators: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    recommended_actions: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    # Intervention bookkeeping
    intervention_action: Mapped[str | None] = mapped_column(String(100), nullable=True)
    intervention_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    outcome: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Notification bookkeeping
    notification_sent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    notification_channels: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    user_notified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    user_acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    user_response: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    quick_actions: Mapped[list["QuickAction"]] = relationship(
        "QuickAction", back_populates="alert"
    )

    __table_args__ = (
        # Escalation window count: pet + type + created_at range
        Index("ix_alerts_pet_id_alert_type_created_at", "pet_id", "alert_type", "created_at"),
    )

    @validates("id", "created_at")
    def validate_immutable(self, key: str, value: Any) -> Any:
        """Reject changes to identity and creation time once set."""
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f"Alert.{key} is immutable once set")
        return value

    def __repr__(self) -> str:
        level = self.severity_level.value if self.severity_level else None
        return (
            f"<Alert(id={self.id!s:.8}, pet_id={self.pet_id}, "
            f"type={self.alert_type!r}, severity_level={level!r})>"
        )


class EmergencyContact(Base):
    """Person to reach out to when an alert is high or critical."""

    __tablename__ = "emergency_contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    contact_type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    user: Mapped["User"] = relationship("User", back_populates="emergency_contacts")

    def __repr__(self) -> str:
        return f"<EmergencyContact(id={self.id}, name={self.name!r}, type={self.contact_type!r})>"


class QuickAction(Base):
    """Generated outreach message for one emergency contact, tied to an alert.

    At most one QuickAction per contact should be ``pending`` at any time.
    The generator checks before inserting; this is best-effort, not a
    database constraint.
    """

    __tablename__ = "quick_actions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    alert_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("alerts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    emergency_contact_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("emergency_contacts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    video_clips: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[QuickActionStatus] = mapped_column(
        Enum(
            QuickActionStatus,
            native_enum=True,
            name="quickactionstatus",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=QuickActionStatus.PENDING,
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    alert: Mapped["Alert"] = relationship("Alert", back_populates="quick_actions")

    __table_args__ = (
        Index("ix_quick_actions_contact_id_status", "emergency_contact_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuickAction(id={self.id!s:.8}, contact_id={self.emergency_contact_id}, "
            f"status={self.status.value if self.status else None!r})>"
        )
