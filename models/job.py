from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class JobStatus(Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressStatus(Enum):
    SUBMITTING = "submitting"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PROGRESS


TERMINAL_PROGRESS = frozenset(
    {
        ProgressStatus.COMPLETED,
        ProgressStatus.FAILED,
        ProgressStatus.TIMEOUT,
        ProgressStatus.CANCELLED,
    }
)


class JobRecord(BaseModel):
    """Snapshot of a job as stored by the write path.

    Accepts both the store's column names (``output_image_url``,
    ``error_message``) and the poll endpoint's names (``output_url``,
    ``error``).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    status: JobStatus
    output_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("output_url", "output_image_url")
    )
    error: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("error", "error_message")
    )
    message: Optional[str] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v == "pending":
                return JobStatus.QUEUED.value
        return v

    @property
    def is_terminal(self) -> bool:
        # completion only counts once it carries an output locator
        if self.status == JobStatus.COMPLETED:
            return bool(self.output_url)
        return self.status == JobStatus.FAILED


@dataclass(frozen=True)
class ProgressEvent:
    status: ProgressStatus
    message: str
    progress: Optional[float] = None
    output_url: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class EnhancementResult:
    success: bool
    status: ProgressStatus
    generation_id: str = ""
    output_url: Optional[str] = None
    error: Optional[str] = None
    cached: bool = False
    processing_time_ms: Optional[int] = None


@dataclass
class ResolutionState:
    started_at: float
    resolved: bool = False
    last_poll_at: Optional[float] = None
    resolved_by: Optional[str] = None
