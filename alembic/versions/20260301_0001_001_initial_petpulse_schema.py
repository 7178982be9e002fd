"""001 initial petpulse schema

Revision ID: 001_initial_petpulse
Revises:
Create Date: 2026-03-01

Creates reference tables (users, pets, emergency_contacts), the video job
table, daily digests, alerts and quick actions, plus the three native enum
types they use.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_petpulse"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

video_status_enum = postgresql.ENUM(
    "PENDING", "PROCESSING", "PROCESSED", "RETRYING", "FAILED", name="videostatus", create_type=False
)
severity_level_enum = postgresql.ENUM(
    "low", "medium", "high", "critical", name="severitylevel", create_type=False
)
quick_action_status_enum = postgresql.ENUM(
    "pending", "sent", "failed", name="quickactionstatus", create_type=False
)


def upgrade() -> None:
    """Create enum types, tables and indexes."""
    bind = op.get_bind()
    video_status_enum.create(bind, checkfirst=True)
    severity_level_enum.create(bind, checkfirst=True)
    quick_action_status_enum.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "pets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_pets_user_id", "pets", ["user_id"])

    op.create_table(
        "emergency_contacts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("contact_type", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_emergency_contacts_user_id", "emergency_contacts", ["user_id"])

    op.create_table(
        "pet_videos",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("pet_id", sa.Integer(), nullable=False),
        sa.Column("file_path", sa.String(1024), nullable=False),
        sa.Column("status", video_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("analysis_result", sa.JSON(), nullable=True),
        sa.Column("activities", sa.JSON(), nullable=True),
        sa.Column("mood", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_unusual", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("severity_level", sa.String(20), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["pet_id"], ["pets.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "retry_count >= 0 AND retry_count <= 2", name="ck_pet_videos_retry_count_range"
        ),
    )
    op.create_index("ix_pet_videos_status", "pet_videos", ["status"])
    op.create_index("ix_pet_videos_pet_id_status", "pet_videos", ["pet_id", "status"])
    # Stuck-job reaper scans in-flight rows by age
    op.create_index(
        "idx_pet_videos_in_flight",
        "pet_videos",
        ["updated_at"],
        postgresql_where=sa.text("status IN ('PROCESSING', 'RETRYING')"),
    )

    op.create_table(
        "daily_digests",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("pet_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("moods", sa.JSON(), nullable=True),
        sa.Column("activities", sa.JSON(), nullable=True),
        sa.Column("unusual_events", sa.JSON(), nullable=True),
        sa.Column("total_videos", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["pet_id"], ["pets.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("pet_id", "date", name="uq_daily_digests_pet_id_date"),
    )

    op.create_table(
        "alerts",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("pet_id", sa.Integer(), nullable=False),
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("severity_level", severity_level_enum, nullable=False, server_default="low"),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("critical_indicators", sa.JSON(), nullable=True),
        sa.Column("recommended_actions", sa.JSON(), nullable=True),
        sa.Column("intervention_action", sa.String(100), nullable=True),
        sa.Column("intervention_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("outcome", sa.Text(), nullable=True),
        sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("notification_channels", sa.JSON(), nullable=True),
        sa.Column("user_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_response", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["pet_id"], ["pets.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_alerts_severity_level", "alerts", ["severity_level"])
    op.create_index(
        "ix_alerts_pet_id_alert_type_created_at",
        "alerts",
        ["pet_id", "alert_type", "created_at"],
    )

    op.create_table(
        "quick_actions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("alert_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("emergency_contact_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("video_clips", sa.JSON(), nullable=True),
        sa.Column("status", quick_action_status_enum, nullable=False, server_default="pending"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["alert_id"], ["alerts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["emergency_contact_id"], ["emergency_contacts.id"], ondelete="RESTRICT"
        ),
    )
    op.create_index("ix_quick_actions_alert_id", "quick_actions", ["alert_id"])
    op.create_index(
        "ix_quick_actions_contact_id_status",
        "quick_actions",
        ["emergency_contact_id", "status"],
    )


def downgrade() -> None:
    """Drop all PetPulse tables and enum types."""
    op.drop_index("ix_quick_actions_contact_id_status", table_name="quick_actions")
    op.drop_index("ix_quick_actions_alert_id", table_name="quick_actions")
    op.drop_table("quick_actions")
    op.drop_index("ix_alerts_pet_id_alert_type_created_at", table_name="alerts")
    op.drop_index("ix_alerts_severity_level", table_name="alerts")
    op.drop_table("alerts")
    op.drop_table("daily_digests")
    op.drop_index("idx_pet_videos_in_flight", table_name="pet_videos")
    op.drop_index("ix_pet_videos_pet_id_status", table_name="pet_videos")
    op.drop_index("ix_pet_videos_status", table_name="pet_videos")
    op.drop_table("pet_videos")
    op.drop_index("ix_emergency_contacts_user_id", table_name="emergency_contacts")
    op.drop_table("emergency_contacts")
    op.drop_index("ix_pets_user_id", table_name="pets")
    op.drop_table("pets")
    op.drop_table("users")

    bind = op.get_bind()
    quick_action_status_enum.drop(bind, checkfirst=True)
    severity_level_enum.drop(bind, checkfirst=True)
    video_status_enum.drop(bind, checkfirst=True)
