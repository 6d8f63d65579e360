"""Type-tagged student answers.

Every answer variant knows how to clean itself against the exam item it
answers (``sanitize``) and how to describe itself to the AI grader
(``render``). Invalid input never raises here: ``sanitize`` returns ``None``
and the caller stores an empty answer of the item's type instead.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from cisa.core.constants import SHORT_RESPONSE_MAX_CHARS, TEXT_ANSWER_MAX_CHARS, QuestionType
from cisa.schemas.exams import ExamItem
from cisa.utils.text import sanitize_text

NO_ANSWER = "No answer provided"


class MultipleChoiceAnswer(BaseModel):
    type: Literal["multiple_choice"] = "multiple_choice"
    selectedOptionId: str | None = None

    def sanitize(self, item: ExamItem) -> "MultipleChoiceAnswer | None":
        if not self.selectedOptionId:
            return MultipleChoiceAnswer()
        if item.option_text(self.selectedOptionId) is None:
            return None
        return MultipleChoiceAnswer(selectedOptionId=self.selectedOptionId)

    def render(self, item: ExamItem) -> str:
        if not self.selectedOptionId:
            return NO_ANSWER
        text = item.option_text(self.selectedOptionId)
        if text is None:
            return f"Selected Option ID: {self.selectedOptionId}"
        return f'Selected Option: "{text}"'


class _MultiSelectBase(BaseModel):
    selectedOptionIds: list[str] = Field(default_factory=list)

    def sanitize(self, item: ExamItem):
        valid = {o.id for o in item.options}
        kept = [option_id for option_id in dict.fromkeys(self.selectedOptionIds) if option_id in valid]
        return self.__class__(selectedOptionIds=kept)

    def render(self, item: ExamItem) -> str:
        if not self.selectedOptionIds:
            return NO_ANSWER
        texts = [o.text for o in item.options if o.id in self.selectedOptionIds]
        if texts:
            return "Selected: " + ", ".join(texts)
        return "Selected IDs: " + ", ".join(self.selectedOptionIds)


class MultipleSelectAnswer(_MultiSelectBase):
    type: Literal["multiple_select"] = "multiple_select"


class ChecklistAnswer(_MultiSelectBase):
    type: Literal["checklist"] = "checklist"


class DragDropAnswer(BaseModel):
    type: Literal["drag_drop"] = "drag_drop"
    dragDropPlacements: dict[str, str] = Field(default_factory=dict)

    def sanitize(self, item: ExamItem) -> "DragDropAnswer":
        zones = {z.id for z in item.dropZones}
        drags = {d.id for d in item.dragItems}
        return DragDropAnswer(
            dragDropPlacements={
                zone_id: drag_id
                for zone_id, drag_id in self.dragDropPlacements.items()
                if zone_id in zones and drag_id in drags
            }
        )

    def render(self, item: ExamItem) -> str:
        if not self.dragDropPlacements:
            return NO_ANSWER
        zone_labels = {z.id: z.label for z in item.dropZones}
        drag_texts = {d.id: d.text for d in item.dragItems}
        return "; ".join(
            f"{zone_labels.get(zone_id, zone_id)} contains {drag_texts.get(drag_id, drag_id)}"
            for zone_id, drag_id in self.dragDropPlacements.items()
        )


class MatchingAnswer(BaseModel):
    type: Literal["matching"] = "matching"
    matchingPairs: dict[str, str] = Field(default_factory=dict)

    def sanitize(self, item: ExamItem) -> "MatchingAnswer":
        left = {entry.id for entry in item.leftColumn}
        right = {entry.id for entry in item.rightColumn}
        return MatchingAnswer(
            matchingPairs={
                left_id: right_id
                for left_id, right_id in self.matchingPairs.items()
                if left_id in left and right_id in right
            }
        )

    def render(self, item: ExamItem) -> str:
        if not self.matchingPairs:
            return NO_ANSWER
        left_texts = {entry.id: entry.text for entry in item.leftColumn}
        right_texts = {entry.id: entry.text for entry in item.rightColumn}
        return "; ".join(
            f"{left_texts.get(left_id, left_id)} -> {right_texts.get(right_id, right_id)}"
            for left_id, right_id in self.matchingPairs.items()
        )


class _TextAnswerBase(BaseModel):
    textAnswer: str = ""

    def render(self, item: ExamItem) -> str:
        return self.textAnswer or "No text provided"


class ShortResponseAnswer(_TextAnswerBase):
    type: Literal["short_response"] = "short_response"

    def sanitize(self, item: ExamItem) -> "ShortResponseAnswer | None":
        text = sanitize_text(self.textAnswer)
        if len(text) > (item.maxCharacters or SHORT_RESPONSE_MAX_CHARS):
            return None
        return ShortResponseAnswer(textAnswer=text)


class ExtendedResponseAnswer(_TextAnswerBase):
    type: Literal["extended_response"] = "extended_response"

    def sanitize(self, item: ExamItem) -> "ExtendedResponseAnswer":
        return ExtendedResponseAnswer(textAnswer=sanitize_text(self.textAnswer, TEXT_ANSWER_MAX_CHARS))


QuestionAnswer = Annotated[
    Union[
        MultipleChoiceAnswer,
        MultipleSelectAnswer,
        ChecklistAnswer,
        DragDropAnswer,
        MatchingAnswer,
        ShortResponseAnswer,
        ExtendedResponseAnswer,
    ],
    Field(discriminator="type"),
]

_ANSWER_ADAPTER = TypeAdapter(QuestionAnswer)

_EMPTY_BY_TYPE = {
    QuestionType.MULTIPLE_CHOICE: MultipleChoiceAnswer,
    QuestionType.MULTIPLE_SELECT: MultipleSelectAnswer,
    QuestionType.CHECKLIST: ChecklistAnswer,
    QuestionType.DRAG_DROP: DragDropAnswer,
    QuestionType.MATCHING: MatchingAnswer,
    QuestionType.SHORT_RESPONSE: ShortResponseAnswer,
    QuestionType.EXTENDED_RESPONSE: ExtendedResponseAnswer,
}


def empty_answer(question_type: QuestionType):
    return _EMPTY_BY_TYPE[question_type]()


def parse_answer(raw: dict | None):
    """Parse a stored answer; unreadable payloads come back as ``None``."""
    if not raw:
        return None
    try:
        return _ANSWER_ADAPTER.validate_python(raw)
    except ValueError:
        return None


def render_answer(item: ExamItem, raw: dict | None) -> str:
    answer = parse_answer(raw)
    if answer is None or answer.type != item.questionType:
        return NO_ANSWER
    return answer.render(item)


def retag_answer(answer, question_type: QuestionType):
    """Read ``answer`` as ``question_type``, keeping only the fields that type shares with it."""
    try:
        return _ANSWER_ADAPTER.validate_python({**answer.model_dump(), "type": question_type.value})
    except ValueError:
        return None
