import pytest

from cisa.core.constants import DEFAULT_RESET_REASON, SubmissionStatus
from cisa.core.exceptions import NotFound, PermissionDenied
from cisa.models.domain import SUBMISSION_FIELDS, Submission, SubmissionArchive
from cisa.schemas.answers import ShortResponseAnswer
from cisa.services.archive_service import ArchiveService, archive_fields
from cisa.services.exam_service import ExamService
from cisa.services.submission_service import RandomState, SubmissionService, SubmissionTiming
from helpers import T0, add_exam, add_submission


async def test_archive_copies_every_field_and_removes_live_row(db, session_maker, admin):
    exam = await add_exam(db, "E1")
    row = await add_submission(db, exam, submission_id="S1", status=SubmissionStatus.GRADED)
    original = {key: getattr(row, key) for key in SUBMISSION_FIELDS}

    await ArchiveService(db).archive_and_reset("S1", admin, "manual reset")

    async with session_maker() as fresh:
        assert await fresh.get(Submission, "S1") is None
        archived = await fresh.get(SubmissionArchive, "S1")
    assert archived.original_submission_id == "S1"
    assert archived.reset_reason == "manual reset"
    assert archived.archived_by == admin.uid
    assert archived.archived_by_email == admin.email
    assert archived.archived_at is not None
    for key in ("exam_id", "student_id", "student_name", "competency", "answers_json", "item_scores_json", "status"):
        assert getattr(archived, key) == original[key]


async def test_reason_defaults_to_admin_reset(db, admin):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, submission_id="S1")

    archive = await ArchiveService(db).archive_and_reset("S1", admin, None)

    assert archive.reset_reason == DEFAULT_RESET_REASON


async def test_second_reset_is_a_no_op(db, session_maker, admin):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, submission_id="S1")
    service = ArchiveService(db)
    first = await service.archive_and_reset("S1", admin, "manual reset")
    archived_at = first.archived_at

    again = await service.archive_and_reset("S1", admin, "different reason")

    assert again.id == "S1"
    async with session_maker() as fresh:
        stored = await fresh.get(SubmissionArchive, "S1")
    assert stored.reset_reason == "manual reset"
    assert stored.archived_at.replace(tzinfo=None) == archived_at.replace(tzinfo=None)


async def test_retry_after_failed_delete_finishes_the_job(db, session_maker, admin):
    exam = await add_exam(db, "E1")
    row = await add_submission(db, exam, submission_id="S1")
    # archive written but live row still present
    db.add(
        SubmissionArchive(
            id="S1", original_submission_id="S1", archived_by=admin.uid, reset_reason="manual reset",
            **archive_fields(row),
        )
    )
    await db.commit()

    await ArchiveService(db).archive_and_reset("S1", admin, "manual reset")

    async with session_maker() as fresh:
        assert await fresh.get(Submission, "S1") is None
        assert await fresh.get(SubmissionArchive, "S1") is not None


async def test_retry_keeps_the_first_archive_audit_trail(db, session_maker, admin):
    exam = await add_exam(db, "E1")
    row = await add_submission(db, exam, submission_id="S1")
    db.add(
        SubmissionArchive(
            id="S1", original_submission_id="S1", archived_at=T0, archived_by="admin-0",
            archived_by_email="first@school.test", reset_reason="retake approved", **archive_fields(row),
        )
    )
    await db.commit()

    archive = await ArchiveService(db).archive_and_reset("S1", admin, "second attempt")

    assert archive.archived_by == "admin-0"
    async with session_maker() as fresh:
        assert await fresh.get(Submission, "S1") is None
        stored = await fresh.get(SubmissionArchive, "S1")
    assert stored.archived_by == "admin-0"
    assert stored.archived_by_email == "first@school.test"
    assert stored.reset_reason == "retake approved"
    assert stored.archived_at.replace(tzinfo=None) == T0.replace(tzinfo=None)


async def test_unknown_submission(db, admin):
    with pytest.raises(NotFound):
        await ArchiveService(db).archive_and_reset("nope", admin)


async def test_students_cannot_reset(db, admin, student):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, submission_id="S1")
    with pytest.raises(PermissionDenied):
        await ArchiveService(db).archive_and_reset("S1", student)


def test_archive_fields_drop_unset_values():
    row = Submission(exam_id="E1", student_id="s", student_name="n", competency="c", score=None, feedback=None)
    fields = archive_fields(row)
    assert "score" not in fields
    assert "feedback" not in fields
    assert fields["exam_id"] == "E1"


async def test_student_can_retake_after_reset(db, admin, student):
    await add_exam(db, "E1")
    submissions = SubmissionService(db)
    answer = {"q1": ShortResponseAnswer(textAnswer="Gravity")}

    first = await submissions.create_submission("E1", student, answer, SubmissionTiming(60), RandomState(seed=7))
    status = await ExamService(db).attempt_status(student, "E1")
    assert status["allowed"] is False

    await ArchiveService(db).archive_and_reset(first["id"], admin, "manual reset")

    status = await ExamService(db).attempt_status(student, "E1")
    assert status == {"allowed": True, "liveSubmissionId": None, "liveStatus": None, "archivedAttempts": 1}
    second = await submissions.create_submission("E1", student, answer, SubmissionTiming(30), RandomState())
    assert second["id"] != first["id"]
    mine = await submissions.list_mine(student)
    assert {(s["id"], s["archived"]) for s in mine} == {(second["id"], False), (first["id"], True)}
