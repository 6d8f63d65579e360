from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.api.deps import db_session, get_current_actor
from cisa.core.constants import SubmissionStatus
from cisa.core.security import AuthorizationContext
from cisa.models.domain import SubmissionArchive
from cisa.schemas.submissions import (
    ArchiveOut,
    FeedbackPatchRequest,
    ResetRequest,
    SubmissionOut,
    SubmissionSummaryOut,
)
from cisa.services.archive_service import ArchiveService
from cisa.services.submission_service import SubmissionService

router = APIRouter(prefix="/submissions", tags=["submissions"])


def serialize_archive(row: SubmissionArchive) -> dict:
    return {
        "id": row.id,
        "originalSubmissionId": row.original_submission_id,
        "examId": row.exam_id,
        "studentId": row.student_id,
        "status": row.status.value,
        "score": row.score,
        "archivedAt": row.archived_at,
        "archivedBy": row.archived_by,
        "archivedByEmail": row.archived_by_email,
        "resetReason": row.reset_reason,
    }


@router.get("", response_model=list[SubmissionSummaryOut])
async def list_submissions(
    status: SubmissionStatus | None = None,
    competency: str | None = None,
    exam_id: str | None = None,
    actor: AuthorizationContext = Depends(get_current_actor),
    db: AsyncSession = Depends(db_session),
):
    return await SubmissionService(db).list_for_monitoring(actor, status, competency, exam_id)


@router.get("/mine", response_model=list[SubmissionOut])
async def list_my_submissions(
    actor: AuthorizationContext = Depends(get_current_actor), db: AsyncSession = Depends(db_session)
):
    return await SubmissionService(db).list_mine(actor)


@router.get("/{submission_id}", response_model=SubmissionOut)
async def get_submission(
    submission_id: str,
    actor: AuthorizationContext = Depends(get_current_actor),
    db: AsyncSession = Depends(db_session),
):
    return await SubmissionService(db).get_submission(actor, submission_id)


@router.patch("/{submission_id}/feedback", response_model=SubmissionOut)
async def patch_feedback(
    submission_id: str,
    payload: FeedbackPatchRequest,
    actor: AuthorizationContext = Depends(get_current_actor),
    db: AsyncSession = Depends(db_session),
):
    return await SubmissionService(db).update_feedback(actor, submission_id, payload.feedback)


@router.post("/{submission_id}/reset", response_model=ArchiveOut)
async def reset_submission(
    submission_id: str,
    payload: ResetRequest,
    actor: AuthorizationContext = Depends(get_current_actor),
    db: AsyncSession = Depends(db_session),
):
    archive = await ArchiveService(db).archive_and_reset(submission_id, actor, payload.reason)
    return serialize_archive(archive)
