"""Queue job records, handles, and statistics."""

from datetime import datetime
from typing import Any

from pydantic import Field

from .base import PipelineBaseModel, generate_id, utc_now
from .enums import JobKind, JobState


class ProcessingJob(PipelineBaseModel):
    """A unit of queued work. Mutated only through the job queue API."""

    id: str = Field(default_factory=lambda: generate_id("job_"))
    kind: JobKind
    payload: dict[str, Any] = Field(default_factory=dict)
    attempt: int = Field(0, ge=0, description="Attempts started so far")
    max_attempts: int = Field(3, ge=1)
    backoff_base_ms: int = Field(2000, ge=0)
    priority: int = Field(1, description="Lower runs first")
    seq: int = Field(0, description="Arrival order, FIFO tie-break within a priority")
    state: JobState = JobState.WAITING
    created_at: datetime = Field(default_factory=utc_now)
    available_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None
    result: dict[str, Any] | None = None
    claimed_by: str | None = Field(None, description="Worker holding the job while it is active")

    @property
    def resume_id(self) -> str | None:
        return self.payload.get("resume_id")

    @property
    def is_pending(self) -> bool:
        return self.state in (JobState.WAITING, JobState.DELAYED, JobState.ACTIVE)


class JobHandle(PipelineBaseModel):
    """Caller-facing view of a queued job."""

    job_id: str
    kind: JobKind
    state: JobState
    resume_id: str | None = None
    attempt: int = 0
    priority: int = 1
    created_at: datetime
    finished_at: datetime | None = None
    last_error: str | None = None
    result: dict[str, Any] | None = None
    estimated_seconds: int | None = None

    @classmethod
    def from_job(cls, job: ProcessingJob, estimated_seconds: int | None = None) -> "JobHandle":
        return cls(
            job_id=job.id,
            kind=job.kind,
            state=job.state,
            resume_id=job.resume_id,
            attempt=job.attempt,
            priority=job.priority,
            created_at=job.created_at,
            finished_at=job.finished_at,
            last_error=job.last_error,
            result=job.result,
            estimated_seconds=estimated_seconds,
        )


class QueueStats(PipelineBaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    quota_exhausted: int = 0
    total: int = 0
