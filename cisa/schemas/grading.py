from pydantic import BaseModel, Field

from cisa.core.constants import ALL_COMPETENCIES


class GradeBatchRequest(BaseModel):
    limit: int = Field(default=20, ge=1, le=100)
    competency: str = Field(default=ALL_COMPETENCIES, min_length=1)


class GradeBatchResponse(BaseModel):
    success: bool
    gradedCount: int
    errorCount: int = 0
    skippedCount: int = 0
