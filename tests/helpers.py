import asyncio
import json
import re
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.constants import MediaType, QuestionType, SubmissionStatus
from cisa.integrations.mail.smtp import OutgoingMail
from cisa.models.domain import Exam, Submission

ITEM_ID_RE = re.compile(r"^Item ID: (\S+)$", re.MULTILINE)
T0 = datetime(2026, 1, 5, 8, 0, tzinfo=UTC)


class FakeModel:
    """Scripted text model.

    Item prompts are answered from ``by_item`` keyed by item id, falling back to
    ``default``. Summary prompts (no item id) get ``summary`` when it is set.
    """

    def __init__(
        self,
        default: str | Exception = '{"score": 1, "feedback": "ok"}',
        by_item: dict | None = None,
        summary: str | Exception | None = None,
    ):
        self.default = default
        self.by_item = by_item or {}
        self.summary = summary
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        match = ITEM_ID_RE.search(prompt)
        if match is None and self.summary is not None:
            reply = self.summary
        else:
            reply = self.by_item.get(match.group(1) if match else None, self.default)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeMailer:
    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.sent: list[OutgoingMail] = []

    async def send(self, mail: OutgoingMail) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append(mail)


def score_reply(score, feedback: str = "ดีมาก") -> str:
    return json.dumps({"score": score, "feedback": feedback}, ensure_ascii=False)


def make_items(*scores: int) -> list[dict]:
    return [
        {
            "id": f"q{idx}",
            "question": f"Explain observation {idx}",
            "questionType": QuestionType.SHORT_RESPONSE.value,
            "score": score,
            "rubricPrompt": "Full marks for a correct causal explanation.",
        }
        for idx, score in enumerate(scores, start=1)
    ]


async def add_exam(
    db: AsyncSession,
    exam_id: str = "E1",
    competency: str = "Physics",
    scores: tuple[int, ...] = (10,),
    items: list[dict] | None = None,
    is_active: bool = True,
    time_limit: int | None = None,
) -> Exam:
    exam = Exam(
        id=exam_id,
        title=f"{competency} exam",
        competency=competency,
        scenario="A ball rolls down a ramp.",
        media_type=MediaType.TEXT,
        items_json=items if items is not None else make_items(*scores),
        is_active=is_active,
        time_limit=time_limit,
        created_by="admin-1",
    )
    db.add(exam)
    await db.commit()
    return exam


async def add_submission(
    db: AsyncSession,
    exam: Exam,
    student_id: str = "stu-1",
    minutes: int = 0,
    submission_id: str | None = None,
    status: SubmissionStatus = SubmissionStatus.PENDING,
    competency: str | None = None,
    exam_id: str | None = None,
) -> Submission:
    items = exam.items_json
    row = Submission(
        exam_id=exam_id or exam.id,
        student_id=student_id,
        student_name=f"Student {student_id}",
        competency=competency or exam.competency,
        answers_json={item["id"]: {"type": item["questionType"], "textAnswer": "Gravity pulls it"} for item in items},
        item_scores_json={item["id"]: 0 for item in items},
        status=status,
        submitted_at=T0 + timedelta(minutes=minutes),
    )
    if submission_id:
        row.id = submission_id
    db.add(row)
    await db.commit()
    return row
