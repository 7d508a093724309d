"""Job posting as seen by the analyze stage."""

from datetime import datetime, timezone

from pydantic import Field, field_validator

from .base import IdentifiedSchema, TimestampSchema, utc_now


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JobRequirements(IdentifiedSchema):
    """Read-only requirements the matching engine scores against."""

    required_skills: list[str] = Field(default_factory=list)
    level: str = Field(..., description="JobLevel value; unknown levels score a neutral 50")


class JobPosting(JobRequirements, TimestampSchema):
    """A hiring entity with the fields the pipeline reads.

    ``critical_skills`` is an optional subset of ``required_skills`` used only
    for the suggested screening status.
    """

    title: str = ""
    critical_skills: list[str] = Field(default_factory=list)
    is_active: bool = True
    end_date: datetime | None = None

    @field_validator("end_date")
    @classmethod
    def normalize_end_date(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.end_date is None:
            return False
        return self.end_date < as_utc(now or utc_now())
