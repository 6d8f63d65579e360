from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from cisa.core.constants import MediaType, OutboxStatus, Role, SubmissionStatus
from cisa.db.base import Base


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=func.now(),
        nullable=False,
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"
    # auth uid issued by the identity provider
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    role: Mapped[Role] = mapped_column(Enum(Role), default=Role.GENERAL_USER, nullable=False)
    student_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    class_room: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_competency: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Exam(Base, TimestampMixin):
    __tablename__ = "exams"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    competency: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    competency_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sub_competency_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scenario: Mapped[str] = mapped_column(Text, default="", nullable=False)
    media_type: Mapped[MediaType] = mapped_column(Enum(MediaType), default=MediaType.TEXT, nullable=False)
    media_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    items_json: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    time_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)


class SubmissionFieldsMixin:
    """Columns shared verbatim by live submissions and their archives."""

    exam_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    student_name: Mapped[str] = mapped_column(String(255), nullable=False)
    class_room: Mapped[str] = mapped_column(String(64), default="N/A", nullable=False)
    competency: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    answers_json: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    item_scores_json: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[SubmissionStatus] = mapped_column(
        Enum(SubmissionStatus), default=SubmissionStatus.PENDING, nullable=False, index=True
    )
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    auto_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    random_seed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generated_values_json: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    detailed_feedback_json: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    submitted_by_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)


class Submission(Base, SubmissionFieldsMixin):
    __tablename__ = "submissions"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    # compare-and-swap counter for grading claims
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lease_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_submissions_queue", "status", "competency", "submitted_at"),
        Index("ix_submissions_student_exam", "student_id", "exam_id"),
    )


class SubmissionArchive(Base, SubmissionFieldsMixin):
    __tablename__ = "submission_archives"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    original_submission_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    archived_by: Mapped[str] = mapped_column(String(128), nullable=False)
    archived_by_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    reset_reason: Mapped[str] = mapped_column(String(500), nullable=False)


class OutboxEvent(Base):
    __tablename__ = "outbox_events"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    payload_json: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[OutboxStatus] = mapped_column(
        Enum(OutboxStatus), default=OutboxStatus.PENDING, nullable=False, index=True
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    lease_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# Columns copied from a live submission into its archive.
SUBMISSION_FIELDS: tuple[str, ...] = tuple(
    column.key for column in SubmissionArchive.__table__.columns
    if column.key in Submission.__table__.columns and column.key != "id"
)
