"""Output of the matching engine."""

from datetime import datetime

from pydantic import Field

from .base import PipelineBaseModel, utc_now
from .enums import Priority, Proficiency, Recommendation


class SkillMatch(PipelineBaseModel):
    """Match outcome for one required skill."""

    skill: str
    matched: bool
    proficiency: Proficiency = Proficiency.NONE
    score: int = Field(0, ge=0, le=100)
    matched_with: str | None = Field(None, description="Candidate skill that satisfied the requirement")


class MatchResult(PipelineBaseModel):
    """Scored comparison of one candidate against one job posting.

    Recomputed on every analyze run and replaced wholesale, never patched.
    """

    score: int = Field(..., ge=0, le=100)
    priority: Priority
    skills_match: list[SkillMatch] = Field(default_factory=list)
    skills_match_percentage: int = Field(0, ge=0, le=100)
    experience_score: int = Field(0, ge=0, le=100)
    education_score: int = Field(0, ge=0, le=100)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendation: Recommendation
    summary: str
    analyzed_at: datetime = Field(default_factory=utc_now)

    @property
    def matched_skill_count(self) -> int:
        return sum(1 for item in self.skills_match if item.matched)
