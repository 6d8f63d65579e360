import pytest

from cisa.core.constants import Role, SubmissionStatus
from cisa.core.exceptions import Conflict, NotFound, PermissionDenied
from cisa.core.security import AuthorizationContext
from cisa.models.domain import User
from cisa.schemas.answers import (
    MatchingAnswer,
    MultipleChoiceAnswer,
    MultipleSelectAnswer,
    ShortResponseAnswer,
)
from cisa.services.submission_service import (
    RandomState,
    RequestAudit,
    SubmissionService,
    SubmissionTiming,
    clamp_time_spent,
    student_display_name,
)
from helpers import add_exam, add_submission

MIXED_ITEMS = [
    {
        "id": "mc",
        "question": "Which force acts downward?",
        "questionType": "multiple_choice",
        "score": 2,
        "rubricPrompt": "Gravity is correct.",
        "options": [{"id": "a", "text": "Gravity"}, {"id": "b", "text": "Lift"}],
    },
    {
        "id": "ms",
        "question": "Select the vectors",
        "questionType": "multiple_select",
        "score": 2,
        "rubricPrompt": "Velocity and force.",
        "options": [{"id": "v", "text": "Velocity"}, {"id": "f", "text": "Force"}, {"id": "m", "text": "Mass"}],
    },
    {
        "id": "sr",
        "question": "Why does it slow down?",
        "questionType": "short_response",
        "score": 3,
        "rubricPrompt": "Mentions friction.",
        "maxCharacters": 20,
    },
    {
        "id": "mt",
        "question": "Match units",
        "questionType": "matching",
        "score": 3,
        "rubricPrompt": "All pairs correct.",
        "leftColumn": [{"id": "L1", "text": "Force"}],
        "rightColumn": [{"id": "R1", "text": "Newton"}],
    },
]


async def submit(db, student, answers=None, timing=None, random_state=None, exam_id="E1"):
    return await SubmissionService(db).create_submission(
        exam_id,
        student,
        answers or {},
        timing or SubmissionTiming(time_spent_seconds=120),
        random_state or RandomState(),
        RequestAudit(ip="10.0.0.5", user_agent="pytest"),
    )


async def test_new_submission_is_pending_with_zeroed_scores(db, student):
    await add_exam(db, "E1", "Physics", scores=(4, 6))

    created = await submit(db, student, random_state=RandomState(seed=42, generated_values={"mass": 2.5}))

    assert created["status"] == SubmissionStatus.PENDING.value
    assert created["score"] is None
    assert created["feedback"] is None
    assert created["itemScores"] == {"q1": 0, "q2": 0}
    assert created["studentName"] == "Somchai Dee"
    assert created["classRoom"] == "M.4/2"
    assert created["competency"] == "Physics"
    assert created["randomSeed"] == 42
    assert created["generatedValues"] == {"mass": 2.5}
    assert created["timeSpentSeconds"] == 120
    assert set(created["answers"]) == {"q1", "q2"}


async def test_answers_are_sanitised_per_item(db, student):
    await add_exam(db, "E1", items=MIXED_ITEMS)
    answers = {
        "mc": MultipleChoiceAnswer(selectedOptionId="zzz"),
        "ms": MultipleSelectAnswer(selectedOptionIds=["v", "f", "bogus", "v"]),
        "sr": ShortResponseAnswer(textAnswer="<b>Friction</b> 'wins'"),
        "mt": ShortResponseAnswer(textAnswer="wrong type"),
    }

    created = await submit(db, student, answers)

    stored = created["answers"]
    assert stored["mc"] == {"type": "multiple_choice", "selectedOptionId": None}
    assert stored["ms"] == {"type": "multiple_select", "selectedOptionIds": ["v", "f"]}
    assert stored["sr"] == {"type": "short_response", "textAnswer": "Friction wins"}
    assert stored["mt"] == {"type": "matching", "matchingPairs": {}}


async def test_mistagged_answers_keep_fields_the_item_type_shares(db, student):
    items = [
        {
            "id": "er",
            "question": "Explain the energy changes",
            "questionType": "extended_response",
            "score": 5,
            "rubricPrompt": "Kinetic to thermal.",
        },
        {
            "id": "cl",
            "question": "Tick the safety steps",
            "questionType": "checklist",
            "score": 2,
            "rubricPrompt": "Goggles and gloves.",
            "options": [{"id": "g", "text": "Goggles"}, {"id": "h", "text": "Gloves"}],
        },
    ]
    await add_exam(db, "E1", items=items)
    answers = {
        "er": ShortResponseAnswer(textAnswer="Kinetic energy turns into heat"),
        "cl": MultipleSelectAnswer(selectedOptionIds=["g", "x"]),
    }

    created = await submit(db, student, answers)

    stored = created["answers"]
    assert stored["er"] == {"type": "extended_response", "textAnswer": "Kinetic energy turns into heat"}
    assert stored["cl"] == {"type": "checklist", "selectedOptionIds": ["g"]}


async def test_overlong_short_response_becomes_empty(db, student):
    await add_exam(db, "E1", items=MIXED_ITEMS)

    created = await submit(db, student, {"sr": ShortResponseAnswer(textAnswer="x" * 21)})

    assert created["answers"]["sr"] == {"type": "short_response", "textAnswer": ""}


async def test_matching_keeps_only_known_pairs(db, student):
    await add_exam(db, "E1", items=MIXED_ITEMS)

    created = await submit(db, student, {"mt": MatchingAnswer(matchingPairs={"L1": "R1", "L9": "R1"})})

    assert created["answers"]["mt"]["matchingPairs"] == {"L1": "R1"}


async def test_duplicate_submission_rejected(db, student):
    await add_exam(db, "E1")
    await submit(db, student)
    with pytest.raises(Conflict):
        await submit(db, student)


async def test_inactive_exam_rejected(db, student):
    await add_exam(db, "E1", is_active=False)
    with pytest.raises(Conflict):
        await submit(db, student)


async def test_unknown_exam(db, student):
    with pytest.raises(NotFound):
        await submit(db, student, exam_id="missing")


async def test_only_students_submit(db, admin):
    await add_exam(db, "E1")
    with pytest.raises(PermissionDenied):
        await submit(db, admin)


async def test_time_spent_clamped_to_exam_limit(db, student):
    await add_exam(db, "E1", time_limit=30)
    created = await submit(db, student, timing=SubmissionTiming(time_spent_seconds=99999, auto_submitted=True))
    assert created["timeSpentSeconds"] == 1800
    assert created["autoSubmitted"] is True


def test_clamp_time_spent():
    assert clamp_time_spent(-5, None, 7200) == 0
    assert clamp_time_spent(None, 10, 7200) == 0
    assert clamp_time_spent(9000, None, 7200) == 7200
    assert clamp_time_spent(61.7, 2, 7200) == 61


def test_display_name_fallbacks():
    assert student_display_name(User(id="uid-1", first_name="A", last_name="B")) == "A B"
    assert student_display_name(User(id="uid-1", first_name="A", student_id="67001")) == "67001"
    assert student_display_name(User(id="uid-1")) == "uid-1"


async def test_student_sees_only_own_submission(db, student):
    exam = await add_exam(db, "E1")
    await add_submission(db, exam, "someone-else", submission_id="S9")
    with pytest.raises(PermissionDenied):
        await SubmissionService(db).get_submission(student, "S9")


async def test_monitoring_shows_error_feedback_instead_of_score(db, admin):
    exam = await add_exam(db, "E1")
    row = await add_submission(db, exam, submission_id="S1", status=SubmissionStatus.ERROR)
    row.feedback = "AI Grading Failed: quota"
    await db.commit()
    await add_submission(db, exam, "s2", minutes=1, submission_id="S2")

    listed = await SubmissionService(db).list_for_monitoring(admin, None, None, None)

    by_id = {s["id"]: s for s in listed}
    assert by_id["S1"]["display"] == "AI Grading Failed: quota"
    assert by_id["S2"]["display"] == "Pending"


async def test_monitoring_requires_staff(db, student):
    with pytest.raises(PermissionDenied):
        await SubmissionService(db).list_for_monitoring(student, None, None, None)


async def test_general_user_cannot_submit(db):
    db.add(User(id="guest", role=Role.GENERAL_USER))
    await db.commit()
    await add_exam(db, "E1")
    with pytest.raises(PermissionDenied):
        await submit(db, AuthorizationContext(uid="guest", role=Role.GENERAL_USER))
