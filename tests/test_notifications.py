import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select, update

from cisa.core.config import get_settings
from cisa.core.constants import OutboxStatus, SubmissionStatus, Tier
from cisa.models.domain import OutboxEvent, Submission
from cisa.services.grader_service import AIGrader
from cisa.services.grading_service import GradingOrchestrator
from cisa.services.notification_service import NotificationService, NotificationTrigger, build_result_mail
from cisa.services.submission_service import SubmissionService
from cisa.utils.tiers import achievement_tier
from helpers import FakeMailer, FakeModel, add_exam, add_submission, score_reply


@pytest.mark.parametrize(
    "score,tier",
    [(10, Tier.GOLD), (8, Tier.GOLD), (7.9, Tier.SILVER), (5, Tier.SILVER), (4.9, Tier.BRONZE), (None, Tier.BRONZE)],
)
def test_achievement_tier(score, tier):
    assert achievement_tier(score) == tier


def graded(status: SubmissionStatus = SubmissionStatus.GRADED) -> Submission:
    return Submission(id="S1", exam_id="E1", student_id="stu-1", student_name="Somchai Dee",
                      competency="Physics", status=status, score=8.5)


async def test_trigger_fires_only_on_the_graded_edge(db):
    trigger = NotificationTrigger(db)

    assert await trigger.on_status_change(SubmissionStatus.PENDING, graded()) is not None
    assert await trigger.on_status_change(SubmissionStatus.ERROR, graded()) is not None
    assert await trigger.on_status_change(None, graded()) is not None
    assert await trigger.on_status_change(SubmissionStatus.GRADED, graded()) is None
    assert await trigger.on_status_change(SubmissionStatus.PENDING, graded(SubmissionStatus.ERROR)) is None


def test_result_mail_contents():
    mail = build_result_mail(
        "somchai@school.test",
        {"submissionId": "S1", "studentName": "Somchai Dee", "competency": "Physics", "score": 8.5},
        "Forces & Motion",
    )
    assert mail.to == "somchai@school.test"
    assert "Gold" in mail.subject
    assert "8.5/10" in mail.text
    assert "https://cisa.test/certificate/S1" in mail.text
    assert "https://cisa.test/certificate/S1" in mail.html
    assert "Forces &amp; Motion" in mail.html


async def test_grading_then_feedback_edit_sends_exactly_once(db, admin, student):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, student.uid, submission_id="S1")
    mailer = FakeMailer()

    await GradingOrchestrator(db, AIGrader(FakeModel(default=score_reply(9)))).run_batch(admin, limit=5)
    assert await NotificationService(db, mailer).dispatch_pending() == 1

    await SubmissionService(db).update_feedback(admin, "S1", "Edited by teacher")
    assert await NotificationService(db, mailer).dispatch_pending() == 0

    assert len(mailer.sent) == 1
    assert mailer.sent[0].to == "somchai@school.test"
    assert "Gold" in mailer.sent[0].subject


async def test_delivery_failure_is_recorded_not_raised(db, session_maker, admin, student):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, student.uid, submission_id="S1")
    await GradingOrchestrator(db, AIGrader(FakeModel(default=score_reply(3)))).run_batch(admin, limit=5)

    sent = await NotificationService(db, FakeMailer(fail=True)).dispatch_pending()

    assert sent == 0
    async with session_maker() as fresh:
        event = (await fresh.execute(select(OutboxEvent))).scalar_one()
        row = await fresh.get(Submission, "S1")
    assert event.status == OutboxStatus.FAILED
    assert event.retry_count == 1
    assert "smtp down" in event.last_error
    assert row.status == SubmissionStatus.GRADED


async def test_missing_recipient_marks_event_failed(db, admin):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, "ghost", submission_id="S1")
    await GradingOrchestrator(db, AIGrader(FakeModel(default=score_reply(6)))).run_batch(admin, limit=5)
    mailer = FakeMailer()

    assert await NotificationService(db, mailer).dispatch_pending() == 0
    assert mailer.sent == []


async def load_event(session_maker) -> OutboxEvent:
    async with session_maker() as fresh:
        return (await fresh.execute(select(OutboxEvent))).scalar_one()


async def test_overlapping_dispatchers_send_once(db, session_maker, admin, student):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, student.uid, submission_id="S1")
    await GradingOrchestrator(db, AIGrader(FakeModel(default=score_reply(9)))).run_batch(admin, limit=5)
    mailer = FakeMailer(delay=0.05)

    async def dispatch() -> int:
        async with session_maker() as session:
            return await NotificationService(session, mailer).dispatch_pending()

    results = await asyncio.gather(dispatch(), dispatch())

    assert sorted(results) == [0, 1]
    assert [mail.to for mail in mailer.sent] == ["somchai@school.test"]
    event = await load_event(session_maker)
    assert event.status == OutboxStatus.SENT
    assert event.lease_token is None


async def test_failed_delivery_is_retried_on_the_next_dispatch(db, session_maker, admin, student):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, student.uid, submission_id="S1")
    await GradingOrchestrator(db, AIGrader(FakeModel(default=score_reply(6)))).run_batch(admin, limit=5)
    mailer = FakeMailer()

    assert await NotificationService(db, FakeMailer(fail=True)).dispatch_pending() == 0
    assert await NotificationService(db, mailer).dispatch_pending() == 1
    assert await NotificationService(db, mailer).dispatch_pending() == 0

    assert len(mailer.sent) == 1
    event = await load_event(session_maker)
    assert event.status == OutboxStatus.SENT
    assert event.retry_count == 1
    assert event.last_error is None


async def test_retries_stop_at_the_cap(db, session_maker, admin, student, monkeypatch):
    monkeypatch.setattr(get_settings(), "notification_max_retries", 2)
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, student.uid, submission_id="S1")
    await GradingOrchestrator(db, AIGrader(FakeModel(default=score_reply(6)))).run_batch(admin, limit=5)
    down = FakeMailer(fail=True)
    mailer = FakeMailer()

    await NotificationService(db, down).dispatch_pending()
    await NotificationService(db, down).dispatch_pending()
    assert await NotificationService(db, mailer).dispatch_pending() == 0

    assert mailer.sent == []
    event = await load_event(session_maker)
    assert event.status == OutboxStatus.FAILED
    assert event.retry_count == 2


async def test_abandoned_send_is_picked_up_after_its_lease(db, session_maker, admin, student):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, student.uid, submission_id="S1")
    await GradingOrchestrator(db, AIGrader(FakeModel(default=score_reply(9)))).run_batch(admin, limit=5)
    mailer = FakeMailer()

    await db.execute(
        update(OutboxEvent).values(
            status=OutboxStatus.SENDING, lease_token="crashed", lease_expires_at=datetime.now(UTC) + timedelta(minutes=5)
        )
    )
    await db.commit()
    assert await NotificationService(db, mailer).dispatch_pending() == 0

    await db.execute(update(OutboxEvent).values(lease_expires_at=datetime.now(UTC) - timedelta(minutes=1)))
    await db.commit()
    assert await NotificationService(db, mailer).dispatch_pending() == 1
    assert len(mailer.sent) == 1
