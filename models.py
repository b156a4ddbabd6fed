from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"


class LighthouseScores(BaseModel):
    """Lighthouse category scores, 0-100. Any category may be missing."""

    model_config = ConfigDict(populate_by_name=True)

    performance: Optional[int] = Field(default=None, ge=0, le=100)
    accessibility: Optional[int] = Field(default=None, ge=0, le=100)
    best_practices: Optional[int] = Field(default=None, ge=0, le=100, alias="bestPractices")
    seo: Optional[int] = Field(default=None, ge=0, le=100)
    url: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Job(BaseModel):
    id: str
    url: str
    email: str
    status: JobStatus = JobStatus.SUBMITTED
    created_at: datetime
    completed_at: Optional[datetime] = None
    lighthouse_before: Optional[LighthouseScores] = None
    lighthouse_after: Optional[LighthouseScores] = None
    netlify_url: Optional[str] = None
    notes: Optional[str] = None
    html_content: Optional[str] = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# Request/Response models
class JobCreateRequest(BaseModel):
    url: str
    email: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"url": "https://example.com", "email": "owner@example.com"}
        }
    )


class JobCreateResponse(BaseModel):
    success: bool
    message: str
    jobId: str


class LighthouseBeforeRequest(BaseModel):
    scores: Optional[LighthouseScores] = None


class LighthouseAfterRequest(BaseModel):
    scores: Optional[LighthouseScores] = None
    netlifyUrl: Optional[str] = None


class LighthouseResponse(BaseModel):
    success: bool
    scores: LighthouseScores


class CompleteRequest(BaseModel):
    netlifyUrl: Optional[str] = None
    notes: Optional[str] = None
    htmlContent: Optional[str] = None


class DeployRequest(BaseModel):
    htmlContent: Optional[str] = None
    siteName: Optional[str] = None


class DeployResponse(BaseModel):
    success: bool
    deployUrl: str
