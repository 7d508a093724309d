"""Enumerations used across the pipeline."""

from enum import Enum


class JobLevel(str, Enum):
    """Seniority level of a job posting."""

    INTERN = "INTERN"
    JUNIOR = "JUNIOR"
    MID_LEVEL = "MID_LEVEL"
    SENIOR = "SENIOR"
    LEAD = "LEAD"
    MANAGER = "MANAGER"


class Priority(str, Enum):
    """Coarse bucket derived from the numeric match score."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXCELLENT = "EXCELLENT"


class Proficiency(str, Enum):
    NONE = "none"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class Recommendation(str, Enum):
    HIGHLY_RECOMMENDED = "HIGHLY_RECOMMENDED"
    RECOMMENDED = "RECOMMENDED"
    CONSIDER = "CONSIDER"
    NOT_RECOMMENDED = "NOT_RECOMMENDED"


class ScreeningStatus(str, Enum):
    """Suggested screening outcome for the external résumé-status workflow."""

    APPROVED = "APPROVED"
    REVIEWING = "REVIEWING"
    REJECTED = "REJECTED"


class FileKind(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"


class JobKind(str, Enum):
    """Kinds of queue work; each kind has exactly one handler."""

    PARSE = "parse"
    ANALYZE = "analyze"


class JobState(str, Enum):
    """Queue-level state of a processing job."""

    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"
    QUOTA_EXHAUSTED = "quota_exhausted"


class ResumeState(str, Enum):
    """Processing state of a résumé record."""

    UPLOADED = "UPLOADED"
    PARSING = "PARSING"
    PARSED = "PARSED"
    PARSE_FAILED = "PARSE_FAILED"
    PARSE_FAILED_QUOTA = "PARSE_FAILED_QUOTA"
    ANALYZING = "ANALYZING"
    ANALYZED = "ANALYZED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    ANALYSIS_FAILED_QUOTA = "ANALYSIS_FAILED_QUOTA"
