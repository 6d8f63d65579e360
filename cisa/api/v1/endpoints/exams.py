from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.api.deps import db_session, get_current_actor, get_request_audit
from cisa.core.config import get_settings
from cisa.core.ratelimit import limiter
from cisa.core.security import AuthorizationContext
from cisa.schemas.common import APIMessage
from cisa.schemas.exams import AttemptStatusOut, ExamActiveRequest, ExamIn, ExamOut, ExamPatch
from cisa.schemas.submissions import SubmissionCreateRequest, SubmissionOut
from cisa.services.exam_service import ExamService
from cisa.services.submission_service import RandomState, RequestAudit, SubmissionService, SubmissionTiming

router = APIRouter(prefix="/exams", tags=["exams"])


@router.get("", response_model=list[ExamOut])
async def list_exams(
    competency: str | None = None,
    actor: AuthorizationContext = Depends(get_current_actor),
    db: AsyncSession = Depends(db_session),
):
    return await ExamService(db).list_exams(actor, competency)


@router.post("", response_model=ExamOut, status_code=201)
async def create_exam(
    payload: ExamIn, actor: AuthorizationContext = Depends(get_current_actor), db: AsyncSession = Depends(db_session)
):
    return await ExamService(db).create_exam(actor, payload)


@router.get("/{exam_id}", response_model=ExamOut)
async def get_exam(
    exam_id: str, actor: AuthorizationContext = Depends(get_current_actor), db: AsyncSession = Depends(db_session)
):
    service = ExamService(db)
    return service.serialize_exam(await service.get_exam_or_404(exam_id))


@router.patch("/{exam_id}", response_model=ExamOut)
async def patch_exam(
    exam_id: str,
    payload: ExamPatch,
    actor: AuthorizationContext = Depends(get_current_actor),
    db: AsyncSession = Depends(db_session),
):
    return await ExamService(db).patch_exam(actor, exam_id, payload)


@router.post("/{exam_id}/active", response_model=ExamOut)
async def set_exam_active(
    exam_id: str,
    payload: ExamActiveRequest,
    actor: AuthorizationContext = Depends(get_current_actor),
    db: AsyncSession = Depends(db_session),
):
    return await ExamService(db).set_active(actor, exam_id, payload.isActive)


@router.delete("/{exam_id}", response_model=APIMessage)
async def delete_exam(
    exam_id: str, actor: AuthorizationContext = Depends(get_current_actor), db: AsyncSession = Depends(db_session)
):
    await ExamService(db).delete_exam(actor, exam_id)
    return APIMessage(message="Exam deleted")


@router.get("/{exam_id}/attempt-status", response_model=AttemptStatusOut)
async def attempt_status(
    exam_id: str, actor: AuthorizationContext = Depends(get_current_actor), db: AsyncSession = Depends(db_session)
):
    return await ExamService(db).attempt_status(actor, exam_id)


@router.post("/{exam_id}/submissions", response_model=SubmissionOut, status_code=201)
async def submit_exam(
    exam_id: str,
    payload: SubmissionCreateRequest,
    actor: AuthorizationContext = Depends(get_current_actor),
    audit: RequestAudit = Depends(get_request_audit),
    db: AsyncSession = Depends(db_session),
):
    settings = get_settings()
    limiter.hit(f"submit:{actor.uid}", settings.submit_rate_limit, settings.submit_rate_window_seconds)
    return await SubmissionService(db).create_submission(
        exam_id=exam_id,
        actor=actor,
        answers=payload.answers,
        timing=SubmissionTiming(time_spent_seconds=payload.timeSpentSeconds, auto_submitted=payload.autoSubmitted),
        random_state=RandomState(seed=payload.randomSeed, generated_values=payload.generatedValues),
        audit=audit,
    )
