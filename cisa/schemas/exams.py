from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from cisa.core.constants import MediaType, QuestionType


class ChoiceOption(BaseModel):
    id: str = Field(min_length=1)
    text: str
    isCorrect: bool | None = None


class DragItem(BaseModel):
    id: str = Field(min_length=1)
    text: str
    imageUrl: str | None = None


class DropZone(BaseModel):
    id: str = Field(min_length=1)
    label: str
    correctItemId: str | None = None


class MatchItem(BaseModel):
    id: str = Field(min_length=1)
    text: str
    imageUrl: str | None = None


class MatchPair(BaseModel):
    id: str = Field(min_length=1)
    text: str
    correctMatchId: str | None = None
    imageUrl: str | None = None


class ExamItem(BaseModel):
    id: str = Field(default_factory=lambda: f"item_{uuid4().hex[:12]}", min_length=1)
    question: str
    questionType: QuestionType
    score: int
    rubricPrompt: str
    category: str | None = None
    options: list[ChoiceOption] = Field(default_factory=list)
    dragItems: list[DragItem] = Field(default_factory=list)
    dropZones: list[DropZone] = Field(default_factory=list)
    leftColumn: list[MatchItem] = Field(default_factory=list)
    rightColumn: list[MatchPair] = Field(default_factory=list)
    maxCharacters: int | None = Field(default=None, ge=1)

    @field_validator("question", "rubricPrompt")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("score")
    @classmethod
    def validate_score(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("score must be a positive integer")
        return v

    def option_text(self, option_id: str | None) -> str | None:
        return next((o.text for o in self.options if o.id == option_id), None)


class ExamIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    competency: str = Field(min_length=1, max_length=255)
    competencyId: str | None = None
    subCompetencyId: str | None = None
    scenario: str = ""
    mediaType: MediaType = MediaType.TEXT
    mediaUrl: str | None = None
    items: list[ExamItem] = Field(min_length=1)
    isActive: bool = True
    timeLimit: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_media(self) -> "ExamIn":
        if self.mediaType == MediaType.SIMULATION and not (self.mediaUrl or "").strip():
            raise ValueError("mediaUrl is required for simulation exams")
        ids = [item.id for item in self.items]
        if len(ids) != len(set(ids)):
            raise ValueError("item ids must be unique")
        return self


class ExamPatch(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    competency: str | None = Field(default=None, min_length=1, max_length=255)
    competencyId: str | None = None
    subCompetencyId: str | None = None
    scenario: str | None = None
    mediaType: MediaType | None = None
    mediaUrl: str | None = None
    items: list[ExamItem] | None = Field(default=None, min_length=1)
    timeLimit: int | None = Field(default=None, ge=1)


class ExamActiveRequest(BaseModel):
    isActive: bool


class ExamOut(BaseModel):
    id: str
    title: str
    competency: str
    competencyId: str | None
    subCompetencyId: str | None
    scenario: str
    mediaType: MediaType
    mediaUrl: str | None
    items: list[ExamItem]
    isActive: bool
    timeLimit: int | None
    createdBy: str
    createdAt: datetime


class AttemptStatusOut(BaseModel):
    allowed: bool
    liveSubmissionId: str | None
    liveStatus: str | None
    archivedAttempts: int
