import random
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.config import get_settings
from cisa.core.constants import RANDOM_SEED_CEILING, Role, SubmissionStatus
from cisa.core.exceptions import Conflict, NotFound, PermissionDenied, ValidationError, store_errors
from cisa.core.security import AuthorizationContext, ensure_staff
from cisa.models.domain import Exam, Submission, SubmissionArchive, User
from cisa.repositories.archive_repository import ArchiveRepository
from cisa.repositories.submission_repository import SubmissionRepository
from cisa.repositories.user_repository import UserRepository
from cisa.schemas.answers import empty_answer, retag_answer
from cisa.services.exam_service import ExamService, exam_items
from cisa.services.notification_service import NotificationTrigger

logger = structlog.get_logger()


@dataclass
class SubmissionTiming:
    time_spent_seconds: float | None = None
    auto_submitted: bool = False


@dataclass
class RandomState:
    seed: int | None = None
    generated_values: dict[str, float] = field(default_factory=dict)


@dataclass
class RequestAudit:
    ip: str | None = None
    user_agent: str | None = None


def student_display_name(user: User) -> str:
    if user.first_name and user.last_name:
        return f"{user.first_name} {user.last_name}"
    return user.student_id or user.id


def clamp_time_spent(raw: float | None, time_limit_minutes: int | None, default_ceiling: int) -> int:
    if raw is None:
        return 0
    ceiling = time_limit_minutes * 60 if time_limit_minutes else default_ceiling
    return max(0, min(int(raw), ceiling))


def validate_answers(exam: Exam, answers: dict) -> dict[str, dict]:
    """One sanitised answer per exam item; anything unusable becomes an empty answer.

    An answer tagged with another type is re-read as the item's type, so a text
    answer sent for an extended response item keeps its text.
    """
    validated: dict[str, dict] = {}
    for item in exam_items(exam):
        submitted = answers.get(item.id)
        if submitted is not None and submitted.type != item.questionType:
            logger.warning(
                "answer_type_mismatch", exam_id=exam.id, item_id=item.id,
                expected=item.questionType.value, got=submitted.type,
            )
            submitted = retag_answer(submitted, item.questionType)
        cleaned = None
        if submitted is not None:
            cleaned = submitted.sanitize(item)
            if cleaned is None:
                logger.warning("answer_rejected", exam_id=exam.id, item_id=item.id)
        answer = cleaned or empty_answer(item.questionType)
        validated[item.id] = answer.model_dump(mode="json")
    return validated


class SubmissionService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self.repo = SubmissionRepository(db)
        self.archives = ArchiveRepository(db)
        self.users = UserRepository(db)
        self.exam_service = ExamService(db)

    async def create_submission(
        self,
        exam_id: str,
        actor: AuthorizationContext,
        answers: dict,
        timing: SubmissionTiming,
        random_state: RandomState,
        audit: RequestAudit | None = None,
    ) -> dict:
        if not actor.uid:
            raise ValidationError("Student identity is required")
        if actor.role != Role.STUDENT:
            raise PermissionDenied("Only students can submit exams")
        student = await self.users.get_by_id(actor.uid)
        if not student:
            raise NotFound("User profile not found")

        exam = await self.exam_service.get_exam_or_404(exam_id)
        if not exam.is_active:
            raise Conflict("This exam is not currently active")
        if not exam.items_json:
            raise Conflict("Invalid exam structure")

        if await self.repo.find_live(actor.uid, exam_id):
            raise Conflict("You have already submitted this exam")

        validated = validate_answers(exam, answers)
        time_spent = clamp_time_spent(
            timing.time_spent_seconds, exam.time_limit, self.settings.default_max_time_seconds
        )
        now = datetime.now(UTC)
        audit = audit or RequestAudit()
        row = Submission(
            exam_id=exam.id,
            student_id=actor.uid,
            student_name=student_display_name(student),
            class_room=student.class_room or "N/A",
            competency=exam.competency,
            answers_json=validated,
            item_scores_json={item_id: 0 for item_id in validated},
            status=SubmissionStatus.PENDING,
            score=None,
            feedback=None,
            submitted_at=now,
            started_at=now - timedelta(seconds=time_spent),
            time_spent_seconds=time_spent,
            auto_submitted=timing.auto_submitted,
            random_seed=(
                random_state.seed if random_state.seed is not None
                else random.randrange(RANDOM_SEED_CEILING)
            ),
            generated_values_json=dict(random_state.generated_values),
            detailed_feedback_json={},
            submitted_by_ip=audit.ip,
            user_agent=(audit.user_agent or "")[:512] or None,
        )
        with store_errors("create submission"):
            await self.repo.create(row)
            await self.db.commit()
        logger.info("submission_created", submission_id=row.id, exam_id=exam.id, student_id=actor.uid)
        return self.serialize_submission(row)

    async def get_submission(self, actor: AuthorizationContext, submission_id: str) -> dict:
        row = await self.repo.get(submission_id)
        if row:
            self._ensure_can_view(actor, row.student_id)
            return self.serialize_submission(row)
        archived = await self.archives.get(submission_id)
        if archived:
            self._ensure_can_view(actor, archived.student_id)
            return self.serialize_submission(archived, archived=True)
        raise NotFound("Submission not found")

    async def list_mine(self, actor: AuthorizationContext) -> list[dict]:
        rows = await self.repo.list_for_student(actor.uid)
        archived = await self.archives.list_for_student(actor.uid)
        return [self.serialize_submission(r) for r in rows] + [
            self.serialize_submission(a, archived=True) for a in archived
        ]

    async def list_for_monitoring(
        self,
        actor: AuthorizationContext,
        status: SubmissionStatus | None,
        competency: str | None,
        exam_id: str | None,
    ) -> list[dict]:
        ensure_staff(actor, "monitor submissions")
        rows = await self.repo.list_filtered(status=status, competency=competency, exam_id=exam_id)
        return [self.serialize_summary(row) for row in rows]

    async def update_feedback(self, actor: AuthorizationContext, submission_id: str, feedback: str) -> dict:
        ensure_staff(actor, "edit feedback")
        row = await self.repo.get(submission_id)
        if not row:
            raise NotFound("Submission not found")
        before = row.status
        row.feedback = feedback
        row.version += 1
        # status is untouched; the trigger sees graded -> graded and stays quiet
        await NotificationTrigger(self.db).on_status_change(before, row)
        with store_errors("update feedback"):
            await self.db.commit()
        logger.info("submission_feedback_edited", submission_id=row.id, actor=actor.uid)
        return self.serialize_submission(row)

    def _ensure_can_view(self, actor: AuthorizationContext, owner_id: str) -> None:
        if actor.uid != owner_id and not actor.is_staff:
            raise PermissionDenied("You can only view your own submissions")

    def serialize_submission(self, row: Submission | SubmissionArchive, archived: bool = False) -> dict:
        return {
            "id": row.id,
            "examId": row.exam_id,
            "studentId": row.student_id,
            "studentName": row.student_name,
            "classRoom": row.class_room,
            "competency": row.competency,
            "answers": row.answers_json,
            "itemScores": row.item_scores_json,
            "status": row.status.value,
            "score": row.score,
            "feedback": row.feedback,
            "submittedAt": row.submitted_at,
            "startedAt": row.started_at,
            "timeSpentSeconds": row.time_spent_seconds,
            "autoSubmitted": row.auto_submitted,
            "randomSeed": row.random_seed,
            "generatedValues": row.generated_values_json,
            "gradedAt": row.graded_at,
            "detailedFeedback": row.detailed_feedback_json,
            "archived": archived,
        }

    def serialize_summary(self, row: Submission) -> dict:
        if row.status == SubmissionStatus.ERROR:
            display = row.feedback or "Grading failed"
        elif row.status == SubmissionStatus.GRADED:
            display = f"{row.score:g}/10" if row.score is not None else "-"
        else:
            display = "Pending"
        return {
            "id": row.id,
            "examId": row.exam_id,
            "studentId": row.student_id,
            "studentName": row.student_name,
            "classRoom": row.class_room,
            "competency": row.competency,
            "status": row.status.value,
            "score": row.score,
            "display": display,
            "submittedAt": row.submitted_at,
            "gradedAt": row.graded_at,
        }
