"""initial schema

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


role_enum = sa.Enum("STUDENT", "ADMIN", "SUPER_ADMIN", "GENERAL_USER", name="role")
media_type_enum = sa.Enum("TEXT", "SIMULATION", name="mediatype")
submission_status_enum = sa.Enum("PENDING", "GRADED", "ERROR", name="submissionstatus")
outbox_status_enum = sa.Enum("PENDING", "SENDING", "SENT", "FAILED", name="outboxstatus")


def _submission_columns() -> list[sa.Column]:
    return [
        sa.Column("exam_id", sa.String(length=64), nullable=False),
        sa.Column("student_id", sa.String(length=128), nullable=False),
        sa.Column("student_name", sa.String(length=255), nullable=False),
        sa.Column("class_room", sa.String(length=64), nullable=False),
        sa.Column("competency", sa.String(length=255), nullable=False),
        sa.Column("answers_json", sa.JSON(), nullable=False),
        sa.Column("item_scores_json", sa.JSON(), nullable=False),
        sa.Column("status", submission_status_enum, nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=False),
        sa.Column("auto_submitted", sa.Boolean(), nullable=False),
        sa.Column("random_seed", sa.Integer(), nullable=True),
        sa.Column("generated_values_json", sa.JSON(), nullable=False),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("detailed_feedback_json", sa.JSON(), nullable=False),
        sa.Column("submitted_by_ip", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
    ]


def _submission_indexes(table: str) -> None:
    for column in ("exam_id", "student_id", "competency", "status", "submitted_at"):
        op.create_index(f"ix_{table}_{column}", table, [column], unique=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("role", role_enum, nullable=False),
        sa.Column("student_id", sa.String(length=64), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("class_room", sa.String(length=64), nullable=True),
        sa.Column("assigned_competency", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)
    op.create_index("ix_users_student_id", "users", ["student_id"], unique=False)

    op.create_table(
        "exams",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("competency", sa.String(length=255), nullable=False),
        sa.Column("competency_id", sa.String(length=64), nullable=True),
        sa.Column("sub_competency_id", sa.String(length=64), nullable=True),
        sa.Column("scenario", sa.Text(), nullable=False),
        sa.Column("media_type", media_type_enum, nullable=False),
        sa.Column("media_url", sa.String(length=1024), nullable=True),
        sa.Column("items_json", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("time_limit", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_exams_competency", "exams", ["competency"], unique=False)

    op.create_table(
        "submissions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        *_submission_columns(),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lease_token", sa.String(length=64), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
    )
    _submission_indexes("submissions")
    op.create_index("ix_submissions_queue", "submissions", ["status", "competency", "submitted_at"], unique=False)
    op.create_index("ix_submissions_student_exam", "submissions", ["student_id", "exam_id"], unique=False)

    op.create_table(
        "submission_archives",
        sa.Column("id", sa.String(length=64), primary_key=True),
        *_submission_columns(),
        sa.Column("original_submission_id", sa.String(length=64), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_by", sa.String(length=128), nullable=False),
        sa.Column("archived_by_email", sa.String(length=320), nullable=True),
        sa.Column("reset_reason", sa.String(length=500), nullable=False),
    )
    _submission_indexes("submission_archives")
    op.create_index(
        "ix_submission_archives_original_submission_id",
        "submission_archives",
        ["original_submission_id"],
        unique=False,
    )

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("status", outbox_status_enum, nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("lease_token", sa.String(length=64), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"], unique=False)
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("submission_archives")
    op.drop_table("submissions")
    op.drop_table("exams")
    op.drop_table("users")
    outbox_status_enum.drop(op.get_bind(), checkfirst=True)
    submission_status_enum.drop(op.get_bind(), checkfirst=True)
    media_type_enum.drop(op.get_bind(), checkfirst=True)
    role_enum.drop(op.get_bind(), checkfirst=True)
