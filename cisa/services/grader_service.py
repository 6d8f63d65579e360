import json
import math
from dataclasses import dataclass, field

import structlog

from cisa.core.config import get_settings
from cisa.core.constants import OVERALL_SCORE_SCALE
from cisa.core.exceptions import AIResponseEmpty, AIResponseMalformed, GradingError
from cisa.integrations.ai.base import TextModel
from cisa.models.domain import Exam, Submission
from cisa.schemas.answers import render_answer
from cisa.schemas.exams import ExamItem
from cisa.services.exam_service import exam_items
from cisa.utils.text import strip_code_fences

logger = structlog.get_logger()

MISSING_ITEM_FEEDBACK = "AI did not provide specific feedback for this item."

ITEM_PROMPT = """Role: Expert PISA Assessor & Teacher.
Scenario: {scenario}

Task: Grade ONE item answered by a student. Decide a raw score from 0 to {max_score}
strictly according to the rubric, and write detailed, encouraging feedback in {language}
(2-3 sentences) that explains why the answer earned that score and how to improve it.

Item ID: {item_id}
Type: {question_type}
Question: {question}
Rubric: {rubric}
Student Answer: {answer}
Max Score: {max_score}

Output strictly valid JSON and nothing else:
{{"score": <number>, "feedback": "<string>"}}
"""

SUMMARY_PROMPT = """Role: Expert PISA Assessor & Teacher.
Scenario: {scenario}

The student's items have already been graded:
{results}

Overall: {raw_total:g} of {max_total:g} raw points ({score:g}/{scale}).

Task: Write an overall summary of the student's performance in {language}
(3-4 sentences). Mention their strengths and the most important thing to improve.

Output strictly valid JSON and nothing else:
{{"summary": "<string>"}}
"""


@dataclass
class ItemGrade:
    score: float
    feedback: str


@dataclass
class GradeResult:
    score: float
    feedback: str
    item_scores: dict[str, float] = field(default_factory=dict)
    item_feedback: dict[str, str] = field(default_factory=dict)


def clamp_score(raw: float, max_score: float) -> float:
    return min(max(raw, 0.0), float(max_score))


def _json_object(text: str | None) -> dict:
    if not text or not text.strip():
        raise AIResponseEmpty()
    try:
        payload = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        raise AIResponseMalformed("Failed to parse AI response as JSON") from exc
    if not isinstance(payload, dict):
        raise AIResponseMalformed("AI response JSON is not an object")
    return payload


def parse_grading_response(text: str | None) -> ItemGrade:
    """Turn model output into an (unclamped) item grade.

    Raises AIResponseEmpty for blank output and AIResponseMalformed when the
    text is not a JSON object carrying a finite numeric ``score``.
    """
    payload = _json_object(text)

    raw_score = payload.get("score")
    if isinstance(raw_score, bool) or raw_score is None:
        raise AIResponseMalformed("AI response has no numeric score")
    try:
        score = float(raw_score)
    except (TypeError, ValueError) as exc:
        raise AIResponseMalformed("AI response has no numeric score") from exc
    if not math.isfinite(score):
        raise AIResponseMalformed("AI response score is not finite")

    feedback = payload.get("feedback")
    if not isinstance(feedback, str) or not feedback.strip():
        feedback = MISSING_ITEM_FEEDBACK
    return ItemGrade(score=score, feedback=feedback.strip())


def parse_summary_response(text: str | None) -> str | None:
    """Summary text from model output, or None when the object carries no usable summary."""
    summary = _json_object(text).get("summary")
    if not isinstance(summary, str) or not summary.strip():
        return None
    return summary.strip()


def fallback_summary(raw_total: float, max_total: float, item_count: int, score: float) -> str:
    return (
        f"Scored {raw_total:g} of {max_total:g} points across {item_count} items "
        f"({score:g}/{OVERALL_SCORE_SCALE})."
    )


def overall_score(raw_total: float, max_total: float) -> float:
    if max_total <= 0:
        return 0.0
    return round(raw_total / max_total * OVERALL_SCORE_SCALE, 1)


class AIGrader:
    """Grades a submission item by item against each item's own rubric."""

    def __init__(self, model: TextModel):
        self.model = model
        self.language = get_settings().grading_feedback_language

    def build_prompt(self, exam: Exam, item: ExamItem, answer_text: str) -> str:
        return ITEM_PROMPT.format(
            scenario=exam.scenario or "No main scenario provided.",
            item_id=item.id,
            question_type=item.questionType.value,
            question=item.question,
            rubric=item.rubricPrompt,
            answer=answer_text,
            max_score=item.score,
            language=self.language,
        )

    async def grade_item(self, exam: Exam, item: ExamItem, raw_answer: dict | None) -> ItemGrade:
        prompt = self.build_prompt(exam, item, render_answer(item, raw_answer))
        text = await self.model.generate(prompt)
        parsed = parse_grading_response(text)
        clamped = clamp_score(parsed.score, item.score)
        if clamped != parsed.score:
            logger.info("ai_score_clamped", item_id=item.id, raw=parsed.score, max_score=item.score)
        return ItemGrade(score=clamped, feedback=parsed.feedback)

    async def grade(self, exam: Exam, submission: Submission) -> GradeResult:
        items = exam_items(exam)
        if not items:
            raise GradingError("Exam has no gradable items")
        answers = submission.answers_json or {}

        result = GradeResult(score=0.0, feedback="")
        raw_total = 0.0
        max_total = 0.0
        for item in items:
            graded = await self.grade_item(exam, item, answers.get(item.id))
            result.item_scores[item.id] = graded.score
            result.item_feedback[item.id] = graded.feedback
            raw_total += graded.score
            max_total += item.score

        result.score = overall_score(raw_total, max_total)
        summary = await self.summarize(exam, items, result, raw_total, max_total)
        if summary is None:
            logger.info("ai_summary_missing", exam_id=exam.id, submission_id=submission.id)
            summary = fallback_summary(raw_total, max_total, len(items), result.score)
        result.feedback = summary
        return result

    async def summarize(
        self, exam: Exam, items: list[ExamItem], result: GradeResult, raw_total: float, max_total: float
    ) -> str | None:
        lines = [
            f"- {item.id} ({item.question}): {result.item_scores[item.id]:g}/{item.score:g}. "
            f"{result.item_feedback[item.id]}"
            for item in items
        ]
        prompt = SUMMARY_PROMPT.format(
            scenario=exam.scenario or "No main scenario provided.",
            results="\n".join(lines),
            raw_total=raw_total,
            max_total=max_total,
            score=result.score,
            scale=OVERALL_SCORE_SCALE,
            language=self.language,
        )
        return parse_summary_response(await self.model.generate(prompt))
