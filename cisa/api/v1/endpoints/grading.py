from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.api.deps import db_session, get_current_actor, get_grader, get_result_mailer
from cisa.core.security import AuthorizationContext
from cisa.db.session import SessionLocal
from cisa.integrations.mail.smtp import Mailer
from cisa.schemas.grading import GradeBatchRequest, GradeBatchResponse
from cisa.services.grader_service import AIGrader
from cisa.services.grading_service import GradingOrchestrator
from cisa.services.notification_service import NotificationService

router = APIRouter(prefix="/grading", tags=["grading"])


async def dispatch_notifications(mailer: Mailer) -> None:
    async with SessionLocal() as db:
        await NotificationService(db, mailer).dispatch_pending()


@router.post("/batch", response_model=GradeBatchResponse)
async def grade_batch(
    payload: GradeBatchRequest,
    background: BackgroundTasks,
    actor: AuthorizationContext = Depends(get_current_actor),
    grader: AIGrader = Depends(get_grader),
    mailer: Mailer = Depends(get_result_mailer),
    db: AsyncSession = Depends(db_session),
):
    result = await GradingOrchestrator(db, grader).run_batch(actor, payload.limit, payload.competency)
    if result.graded_count:
        background.add_task(dispatch_notifications, mailer)
    return GradeBatchResponse(
        success=True,
        gradedCount=result.graded_count,
        errorCount=result.error_count,
        skippedCount=result.skipped_count,
    )
