import html
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import structlog
from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.config import get_settings
from cisa.core.constants import SUBMISSION_GRADED_EVENT, SubmissionStatus
from cisa.events.outbox import claim_event, mark_processed, pending_events, push_event
from cisa.integrations.mail.smtp import Mailer, OutgoingMail
from cisa.models.domain import OutboxEvent, Submission
from cisa.repositories.exam_repository import ExamRepository
from cisa.repositories.user_repository import UserRepository
from cisa.utils.tiers import achievement_tier

logger = structlog.get_logger()

NOTIFICATIONS_SENT = Counter("cisa_notifications_total", "Result notifications processed", ["outcome"])


class NotificationTrigger:
    """Queues a result notification when a submission first becomes graded."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def on_status_change(self, before: SubmissionStatus | None, after: Submission) -> OutboxEvent | None:
        if before == SubmissionStatus.GRADED or after.status != SubmissionStatus.GRADED:
            return None
        event = await push_event(
            self.db,
            SUBMISSION_GRADED_EVENT,
            {
                "submissionId": after.id,
                "studentId": after.student_id,
                "studentName": after.student_name,
                "examId": after.exam_id,
                "competency": after.competency,
                "score": after.score,
            },
        )
        logger.info("notification_queued", submission_id=after.id, event_id=event.id)
        return event


def certificate_link(submission_id: str) -> str:
    base = get_settings().public_base_url.rstrip("/")
    return f"{base}/certificate/{submission_id}"


def build_result_mail(to: str, payload: dict, exam_title: str) -> OutgoingMail:
    score = payload.get("score") or 0
    tier = achievement_tier(score).value
    name = payload.get("studentName") or "Student"
    link = certificate_link(payload["submissionId"])
    subject = f"Your results for {exam_title} are ready ({tier})"
    text = (
        f"Hello {name},\n\n"
        f"Your submission for \"{exam_title}\" ({payload.get('competency', '')}) has been graded.\n"
        f"Score: {score:g}/10\nAchievement: {tier}\n\n"
        f"View your certificate: {link}\n"
    )
    body = (
        f"<p>Hello {html.escape(name)},</p>"
        f"<p>Your submission for <strong>{html.escape(exam_title)}</strong> has been graded.</p>"
        f"<p>Score: <strong>{score:g}/10</strong><br>Achievement: <strong>{tier}</strong></p>"
        f'<p><a href="{html.escape(link)}">View your certificate</a></p>'
    )
    return OutgoingMail(to=to, subject=subject, html=body, text=text)


class NotificationService:
    def __init__(self, db: AsyncSession, mailer: Mailer):
        self.db = db
        self.mailer = mailer

    async def dispatch_pending(self, limit: int = 50) -> int:
        """Deliver queued result notifications. Delivery failures never propagate.

        Each event is claimed under a lease before the mail goes out, so
        overlapping dispatchers never send the same result twice.
        """
        settings = get_settings()
        now = datetime.now(UTC)
        events = await pending_events(
            self.db, SUBMISSION_GRADED_EVENT, max_retries=settings.notification_max_retries, now=now, limit=limit
        )
        sent = 0
        for event in events:
            claimed = await claim_event(
                self.db,
                event,
                token=uuid4().hex,
                expires_at=now + timedelta(seconds=settings.notification_lease_seconds),
                max_retries=settings.notification_max_retries,
                now=now,
            )
            await self.db.commit()
            if not claimed:
                logger.info("notification_claim_lost", event_id=event.id)
                continue
            error = await self._deliver(event)
            mark_processed(event, error)
            if error is None:
                sent += 1
                NOTIFICATIONS_SENT.labels(outcome="sent").inc()
            else:
                NOTIFICATIONS_SENT.labels(outcome="failed").inc()
            await self.db.commit()
        return sent

    async def _deliver(self, event: OutboxEvent) -> str | None:
        payload = event.payload_json or {}
        submission_id = payload.get("submissionId")
        student = await UserRepository(self.db).get_by_id(payload.get("studentId", ""))
        if not student or not student.email:
            logger.warning("notification_no_recipient", submission_id=submission_id)
            return "student has no email address"
        exam = await ExamRepository(self.db).get_by_id(payload.get("examId", ""))
        exam_title = exam.title if exam else "your exam"
        try:
            await self.mailer.send(build_result_mail(student.email, payload, exam_title))
        except Exception as exc:
            logger.error("notification_failed", submission_id=submission_id, error=str(exc))
            return str(exc) or exc.__class__.__name__
        logger.info("notification_sent", submission_id=submission_id, to=student.email)
        return None
