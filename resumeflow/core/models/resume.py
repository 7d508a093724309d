"""Résumé record and its processing history."""

from datetime import datetime

from pydantic import Field

from .base import IdentifiedSchema, PipelineBaseModel, TimestampSchema, utc_now
from .candidate import ParsedCandidateData
from .enums import Priority, ResumeState
from .match_result import MatchResult


class StateChange(PipelineBaseModel):
    """One entry of the résumé's transition history."""

    state: ResumeState
    at: datetime = Field(default_factory=utc_now)
    note: str | None = None


class ResumeRecord(IdentifiedSchema, TimestampSchema):
    """A submitted résumé plus everything the pipeline derived from it.

    ``is_analyzed`` implies ``is_parsed``; the state controller keeps both
    flags consistent with ``state``.
    """

    job_posting_id: str | None = None
    file_path: str | None = None
    state: ResumeState = ResumeState.UPLOADED
    is_parsed: bool = False
    is_analyzed: bool = False
    parsed_data: ParsedCandidateData | None = None
    ai_analysis: MatchResult | None = None
    priority: Priority | None = None
    parse_error: str | None = None
    analysis_error: str | None = None
    history: list[StateChange] = Field(default_factory=list)
