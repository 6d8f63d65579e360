from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import structlog
from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.config import get_settings
from cisa.core.constants import ALL_COMPETENCIES, STAFF_ROLES, SubmissionStatus
from cisa.core.exceptions import DomainError, PermissionDenied, StoreUnavailable, ValidationError
from cisa.core.security import AuthorizationContext
from cisa.models.domain import Exam, Submission
from cisa.repositories.exam_repository import ExamRepository
from cisa.repositories.submission_repository import SubmissionRepository
from cisa.repositories.user_repository import UserRepository
from cisa.services.grader_service import AIGrader
from cisa.services.notification_service import NotificationTrigger

logger = structlog.get_logger()

GRADING_OUTCOMES = Counter("cisa_grading_submissions_total", "Submissions processed by batch grading", ["outcome"])

FAILURE_PREFIX = "AI Grading Failed: "


@dataclass
class BatchResult:
    graded_count: int = 0
    error_count: int = 0
    skipped_count: int = 0


class GradingOrchestrator:
    """Grades the oldest pending submissions one at a time.

    Each submission is claimed with a compare-and-swap on ``version`` plus a
    short lease before the AI is called, so two concurrent batches never grade
    the same row. A run killed mid-submission leaves it ``pending``; once the
    lease expires the next batch picks it up again.
    """

    def __init__(self, db: AsyncSession, grader: AIGrader):
        self.db = db
        self.grader = grader
        self.settings = get_settings()
        self.repo = SubmissionRepository(db)
        self.exams = ExamRepository(db)
        self.trigger = NotificationTrigger(db)

    async def run_batch(
        self,
        actor: AuthorizationContext,
        limit: int | None = None,
        competency: str | None = ALL_COMPETENCIES,
    ) -> BatchResult:
        await self._ensure_grader_role(actor)
        limit = self.settings.grading_default_limit if limit is None else limit
        if limit < 1 or limit > self.settings.grading_max_limit:
            raise ValidationError(f"limit must be between 1 and {self.settings.grading_max_limit}")
        competency_filter = None if competency in (None, "", ALL_COMPETENCIES) else competency

        now = datetime.now(UTC)
        selected = await self.repo.select_pending(limit, competency_filter, now)
        result = BatchResult()
        if not selected:
            logger.info("grading_batch_empty", competency=competency_filter or ALL_COMPETENCIES)
            return result

        logger.info("grading_batch_started", count=len(selected), limit=limit, actor=actor.uid)
        exam_cache: dict[str, Exam | None] = {}
        # a rollback expires every loaded instance, so rows are looked up again by id
        for submission_id in [row.id for row in selected]:
            outcome = await self._process(submission_id, exam_cache)
            GRADING_OUTCOMES.labels(outcome=outcome).inc()
            if outcome == "graded":
                result.graded_count += 1
            elif outcome == "error":
                result.error_count += 1
            else:
                result.skipped_count += 1

        logger.info(
            "grading_batch_finished",
            graded=result.graded_count,
            errors=result.error_count,
            skipped=result.skipped_count,
        )
        return result

    async def _ensure_grader_role(self, actor: AuthorizationContext) -> None:
        # never trust the role carried by the caller
        user = await UserRepository(self.db).get_by_id(actor.uid)
        if not user or not user.is_active or user.role not in STAFF_ROLES:
            raise PermissionDenied("Only admins can grade exams")

    async def _exam_for(self, exam_id: str, cache: dict[str, Exam | None]) -> Exam | None:
        if exam_id not in cache:
            cache[exam_id] = await self.exams.get_by_id(exam_id)
        return cache[exam_id]

    async def _process(self, submission_id: str, exam_cache: dict[str, Exam | None]) -> str:
        token = uuid4().hex
        try:
            row = await self.repo.get(submission_id)
            if row is None or row.status != SubmissionStatus.PENDING:
                logger.info("grading_row_gone", submission_id=submission_id)
                return "skipped"
            exam = await self._exam_for(row.exam_id, exam_cache)
            if exam is None:
                logger.warning("grading_exam_missing", submission_id=submission_id, exam_id=row.exam_id)
                return "skipped"

            expires_at = datetime.now(UTC) + timedelta(seconds=self.settings.grading_lease_seconds)
            claimed = await self.repo.claim(submission_id, row.version, token, expires_at)
            await self.db.commit()
            if not claimed:
                logger.info("grading_claim_lost", submission_id=submission_id)
                return "skipped"

            values, outcome = await self._grade(exam, row)
            if not await self.repo.complete(submission_id, token, values):
                await self.db.rollback()
                exam_cache.clear()
                logger.warning("grading_lease_lost", submission_id=submission_id)
                return "skipped"

            if outcome == "graded":
                await self.db.refresh(row)
                await self.trigger.on_status_change(SubmissionStatus.PENDING, row)
            await self.db.commit()
            return outcome
        except (StoreUnavailable, SQLAlchemyError) as exc:
            logger.error("grading_store_failed", submission_id=submission_id, error=str(exc))
            exam_cache.clear()
            await self._release_after_failure(submission_id, token)
            return "skipped"

    async def _grade(self, exam: Exam, row: Submission) -> tuple[dict, str]:
        try:
            graded = await self.grader.grade(exam, row)
        except DomainError as exc:
            logger.warning("grading_failed", submission_id=row.id, error=exc.message)
            return {"status": SubmissionStatus.ERROR, "feedback": FAILURE_PREFIX + exc.message}, "error"
        except Exception as exc:
            logger.exception("grading_failed_unexpected", submission_id=row.id)
            message = str(exc) or exc.__class__.__name__
            return {"status": SubmissionStatus.ERROR, "feedback": FAILURE_PREFIX + message}, "error"

        logger.info("submission_graded", submission_id=row.id, score=graded.score)
        return {
            "status": SubmissionStatus.GRADED,
            "score": graded.score,
            "feedback": graded.feedback,
            "item_scores_json": graded.item_scores,
            "detailed_feedback_json": graded.item_feedback,
            "graded_at": datetime.now(UTC),
        }, "graded"

    async def _release_after_failure(self, submission_id: str, token: str) -> None:
        try:
            await self.db.rollback()
            await self.repo.release(submission_id, token)
            await self.db.commit()
        except SQLAlchemyError as exc:
            # the lease simply expires
            logger.warning("grading_release_failed", submission_id=submission_id, error=str(exc))
