"""resumeflow data models for résumés, job postings, matching, and the queue."""

from .base import (
    IdentifiedSchema,
    PipelineBaseModel,
    TimestampSchema,
    generate_id,
    utc_now,
)
from .candidate import EducationEntry, ExperienceEntry, ParsedCandidateData
from .enums import (
    FileKind,
    JobKind,
    JobLevel,
    JobState,
    Priority,
    Proficiency,
    Recommendation,
    ResumeState,
    ScreeningStatus,
)
from .job_posting import JobPosting, JobRequirements
from .match_result import MatchResult, SkillMatch
from .queue import JobHandle, ProcessingJob, QueueStats
from .resume import ResumeRecord, StateChange

__all__ = [
    # Base
    "PipelineBaseModel",
    "IdentifiedSchema",
    "TimestampSchema",
    "generate_id",
    "utc_now",
    # Enums
    "FileKind",
    "JobKind",
    "JobLevel",
    "JobState",
    "Priority",
    "Proficiency",
    "Recommendation",
    "ResumeState",
    "ScreeningStatus",
    # Candidate
    "ParsedCandidateData",
    "ExperienceEntry",
    "EducationEntry",
    # Job posting
    "JobPosting",
    "JobRequirements",
    # Matching
    "MatchResult",
    "SkillMatch",
    # Résumé
    "ResumeRecord",
    "StateChange",
    # Queue
    "ProcessingJob",
    "JobHandle",
    "QueueStats",
]
