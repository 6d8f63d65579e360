import asyncio

import structlog

from cisa.core.constants import ALL_COMPETENCIES, Role
from cisa.core.security import AuthorizationContext
from cisa.db.session import SessionLocal
from cisa.integrations.ai.gemini import GeminiClient
from cisa.integrations.mail.smtp import get_mailer
from cisa.services.grader_service import AIGrader
from cisa.services.grading_service import GradingOrchestrator
from cisa.services.notification_service import NotificationService
from cisa.tasks.celery_app import celery

logger = structlog.get_logger()


async def _run_batch(actor_uid: str, limit: int | None, competency: str) -> dict:
    client = GeminiClient()
    try:
        async with SessionLocal() as db:
            # role is re-checked against the users table by the orchestrator
            actor = AuthorizationContext(uid=actor_uid, role=Role.ADMIN)
            result = await GradingOrchestrator(db, AIGrader(client)).run_batch(actor, limit, competency)
        async with SessionLocal() as db:
            await NotificationService(db, get_mailer()).dispatch_pending()
    finally:
        await client.aclose()
    return {
        "success": True,
        "gradedCount": result.graded_count,
        "errorCount": result.error_count,
        "skippedCount": result.skipped_count,
    }


async def _dispatch() -> int:
    async with SessionLocal() as db:
        return await NotificationService(db, get_mailer()).dispatch_pending()


@celery.task(name="grading.run_batch")
def grading_run_batch(actor_uid: str, limit: int | None = None, competency: str = ALL_COMPETENCIES) -> dict:
    result = asyncio.run(_run_batch(actor_uid, limit, competency))
    logger.info("grading_task_done", **result)
    return result


@celery.task(name="notifications.dispatch")
def notifications_dispatch() -> dict:
    sent = asyncio.run(_dispatch())
    return {"ok": True, "sent": sent}
