import pydantic
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.constants import Role
from cisa.core.exceptions import Conflict, NotFound, ValidationError, store_errors
from cisa.core.security import AuthorizationContext, ensure_can_author
from cisa.models.domain import Exam
from cisa.repositories.archive_repository import ArchiveRepository
from cisa.repositories.exam_repository import ExamRepository
from cisa.repositories.submission_repository import SubmissionRepository
from cisa.schemas.exams import ExamIn, ExamItem, ExamPatch

logger = structlog.get_logger()


def exam_items(exam: Exam) -> list[ExamItem]:
    try:
        return [ExamItem.model_validate(raw) for raw in exam.items_json or []]
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Exam {exam.id} has malformed items") from exc


class ExamService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = ExamRepository(db)

    async def get_exam_or_404(self, exam_id: str) -> Exam:
        row = await self.repo.get_by_id(exam_id)
        if not row:
            raise NotFound("Exam not found")
        return row

    async def list_exams(self, actor: AuthorizationContext, competency: str | None = None) -> list[dict]:
        # students and general users only see what they can currently take
        active_only = not actor.is_staff
        if actor.role == Role.ADMIN and actor.assigned_competency and not competency:
            competency = actor.assigned_competency
        rows = await self.repo.list_exams(competency=competency, active_only=active_only)
        return [self.serialize_exam(row) for row in rows]

    async def create_exam(self, actor: AuthorizationContext, payload: ExamIn) -> dict:
        ensure_can_author(actor, payload.competency)
        row = Exam(
            title=payload.title.strip(),
            competency=payload.competency,
            competency_id=payload.competencyId,
            sub_competency_id=payload.subCompetencyId,
            scenario=payload.scenario,
            media_type=payload.mediaType,
            media_url=payload.mediaUrl,
            items_json=[item.model_dump(mode="json") for item in payload.items],
            is_active=payload.isActive,
            time_limit=payload.timeLimit,
            created_by=actor.uid,
        )
        with store_errors("create exam"):
            await self.repo.add(row)
            await self.db.commit()
        logger.info("exam_created", exam_id=row.id, competency=row.competency, items=len(payload.items))
        return self.serialize_exam(row)

    async def patch_exam(self, actor: AuthorizationContext, exam_id: str, patch: ExamPatch) -> dict:
        row = await self.get_exam_or_404(exam_id)
        ensure_can_author(actor, row.competency)
        current = self._as_input(row)
        merged = current.model_dump() | patch.model_dump(exclude_unset=True)
        try:
            updated = ExamIn.model_validate(merged)
        except pydantic.ValidationError as exc:
            raise ValidationError(str(exc.errors()[0].get("msg", "Invalid exam"))) from exc
        if updated.competency != row.competency:
            ensure_can_author(actor, updated.competency)

        row.title = updated.title.strip()
        row.competency = updated.competency
        row.competency_id = updated.competencyId
        row.sub_competency_id = updated.subCompetencyId
        row.scenario = updated.scenario
        row.media_type = updated.mediaType
        row.media_url = updated.mediaUrl
        row.items_json = [item.model_dump(mode="json") for item in updated.items]
        row.time_limit = updated.timeLimit
        with store_errors("update exam"):
            await self.db.commit()
        logger.info("exam_updated", exam_id=row.id)
        return self.serialize_exam(row)

    async def set_active(self, actor: AuthorizationContext, exam_id: str, is_active: bool) -> dict:
        row = await self.get_exam_or_404(exam_id)
        ensure_can_author(actor, row.competency)
        row.is_active = is_active
        with store_errors("toggle exam"):
            await self.db.commit()
        logger.info("exam_active_changed", exam_id=row.id, is_active=is_active)
        return self.serialize_exam(row)

    async def delete_exam(self, actor: AuthorizationContext, exam_id: str) -> None:
        row = await self.get_exam_or_404(exam_id)
        ensure_can_author(actor, row.competency)
        if await self.repo.reference_count(exam_id):
            raise Conflict("Exam has submissions; deactivate it instead")
        with store_errors("delete exam"):
            await self.repo.delete(row)
            await self.db.commit()
        logger.info("exam_deleted", exam_id=exam_id)

    async def attempt_status(self, actor: AuthorizationContext, exam_id: str) -> dict:
        await self.get_exam_or_404(exam_id)
        live = await SubmissionRepository(self.db).find_live(actor.uid, exam_id)
        archived = await ArchiveRepository(self.db).count_for_student_exam(actor.uid, exam_id)
        return {
            "allowed": live is None,
            "liveSubmissionId": live.id if live else None,
            "liveStatus": live.status.value if live else None,
            "archivedAttempts": archived,
        }

    def serialize_exam(self, row: Exam) -> dict:
        return {
            "id": row.id,
            "title": row.title,
            "competency": row.competency,
            "competencyId": row.competency_id,
            "subCompetencyId": row.sub_competency_id,
            "scenario": row.scenario,
            "mediaType": row.media_type,
            "mediaUrl": row.media_url,
            "items": row.items_json,
            "isActive": row.is_active,
            "timeLimit": row.time_limit,
            "createdBy": row.created_by,
            "createdAt": row.created_at,
        }

    def _as_input(self, row: Exam) -> ExamIn:
        return ExamIn(
            title=row.title,
            competency=row.competency,
            competencyId=row.competency_id,
            subCompetencyId=row.sub_competency_id,
            scenario=row.scenario,
            mediaType=row.media_type,
            mediaUrl=row.media_url,
            items=exam_items(row),
            isActive=row.is_active,
            timeLimit=row.time_limit,
        )
