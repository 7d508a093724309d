"""Structured candidate data produced by the parse stage."""

import re
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from .base import PipelineBaseModel

_LEADING_NUMBER = re.compile(r"\d+(?:[.,]\d+)?")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ExperienceEntry(PipelineBaseModel):
    """One position in the candidate's work history."""

    company: str | None = None
    position: str | None = None
    duration_text: str | None = Field(
        None,
        validation_alias=AliasChoices("duration_text", "durationText", "duration"),
    )
    description: str | None = None

    @field_validator("company", "position", "duration_text", "description", mode="before")
    @classmethod
    def _blank_fields(cls, value: Any) -> Any:
        return _blank_to_none(value)


class EducationEntry(PipelineBaseModel):
    """One education entry."""

    school: str | None = None
    degree: str | None = None
    major: str | None = None
    duration_text: str | None = Field(
        None,
        validation_alias=AliasChoices("duration_text", "durationText", "duration"),
    )
    gpa: str | None = None

    @field_validator("gpa", mode="before")
    @classmethod
    def _gpa_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return _blank_to_none(value)


class ParsedCandidateData(PipelineBaseModel):
    """Output of the AI extraction step.

    Written once per successful parse and replaced only by an explicit
    re-parse. Accepts both snake_case and the camelCase keys the extraction
    prompt asks for.
    """

    full_name: str | None = Field(None, validation_alias=AliasChoices("full_name", "fullName"))
    email: str | None = None
    phone: str | None = None
    skills: list[str] = Field(default_factory=list, description="Distinct skills, first mention order")
    experience: list[ExperienceEntry] = Field(default_factory=list)
    education: list[EducationEntry] = Field(default_factory=list)
    summary: str | None = None
    years_of_experience: float | None = Field(
        None,
        ge=0,
        validation_alias=AliasChoices("years_of_experience", "yearsOfExperience"),
    )

    @field_validator("skills", mode="before")
    @classmethod
    def _distinct_skills(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        seen: set[str] = set()
        skills: list[str] = []
        for item in value:
            if item is None:
                continue
            text = str(item).strip()
            if text and text not in seen:
                seen.add(text)
                skills.append(text)
        return skills

    @field_validator("years_of_experience", mode="before")
    @classmethod
    def _years_from_text(cls, value: Any) -> Any:
        # Models sometimes answer "5+ years" instead of a number
        if isinstance(value, str):
            match = _LEADING_NUMBER.search(value)
            return float(match.group().replace(",", ".")) if match else None
        return value

    @field_validator("full_name", "email", "phone", "summary", mode="before")
    @classmethod
    def _blank_fields(cls, value: Any) -> Any:
        return _blank_to_none(value)

    def field_names_present(self) -> list[str]:
        """Names of the fields that carry data, for parse-result reporting."""
        present = []
        for name in type(self).model_fields:
            value = getattr(self, name)
            if value not in (None, "", []):
                present.append(name)
        return present
