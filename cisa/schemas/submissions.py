from datetime import datetime

from pydantic import BaseModel, Field

from cisa.schemas.answers import QuestionAnswer


class SubmissionCreateRequest(BaseModel):
    answers: dict[str, QuestionAnswer] = Field(default_factory=dict)
    timeSpentSeconds: float | None = None
    autoSubmitted: bool = False
    randomSeed: int | None = None
    generatedValues: dict[str, float] = Field(default_factory=dict)


class SubmissionOut(BaseModel):
    id: str
    examId: str
    studentId: str
    studentName: str
    classRoom: str
    competency: str
    answers: dict
    itemScores: dict[str, float]
    status: str
    score: float | None
    feedback: str | None
    submittedAt: datetime
    startedAt: datetime | None
    timeSpentSeconds: int
    autoSubmitted: bool
    randomSeed: int | None
    generatedValues: dict
    gradedAt: datetime | None
    detailedFeedback: dict[str, str]
    archived: bool = False


class SubmissionSummaryOut(BaseModel):
    id: str
    examId: str
    studentId: str
    studentName: str
    classRoom: str
    competency: str
    status: str
    score: float | None
    # error feedback is shown in place of a score
    display: str
    submittedAt: datetime
    gradedAt: datetime | None


class FeedbackPatchRequest(BaseModel):
    feedback: str = Field(min_length=1, max_length=20000)


class ResetRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ArchiveOut(BaseModel):
    id: str
    originalSubmissionId: str
    examId: str
    studentId: str
    status: str
    score: float | None
    archivedAt: datetime
    archivedBy: str
    archivedByEmail: str | None
    resetReason: str
