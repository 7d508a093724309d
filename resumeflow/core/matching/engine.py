"""Deterministic candidate/job matching.

Everything here is pure: no I/O, no randomness, no AI calls. The same
candidate and job always produce the same MatchResult (apart from
``analyzed_at``, which callers may pin).
"""

import math
import re
import unicodedata
from datetime import datetime
from typing import Iterable

from ..models.candidate import EducationEntry, ParsedCandidateData
from ..models.enums import JobLevel, Priority, Proficiency, Recommendation, ScreeningStatus
from ..models.job_posting import JobPosting, JobRequirements
from ..models.match_result import MatchResult, SkillMatch
from ..models.base import utc_now
from . import constants as c

_NON_SKILL_CHARS = re.compile(r"[^\w\s+#]")


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def coerce_level(level: str | JobLevel | None) -> JobLevel | None:
    if level is None:
        return None
    try:
        return JobLevel(str(level).upper())
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------


def normalize_skill(skill: str) -> str:
    """Uppercase, trim, drop punctuation other than + and #, collapse spaces."""
    text = _NON_SKILL_CHARS.sub("", skill.strip().upper())
    return " ".join(text.split())


def _build_alias_groups() -> list[frozenset[str]]:
    groups = []
    for canonical, aliases in c.SKILL_ALIASES.items():
        names = {normalize_skill(canonical)} | {normalize_skill(a) for a in aliases}
        groups.append(frozenset(name for name in names if name))
    return groups


ALIAS_GROUPS = _build_alias_groups()


def is_skill_match(candidate_skill: str, required_skill: str) -> bool:
    """Compare two already-normalized skills.

    Matches on equality, substring in either direction, or shared membership
    in an alias group.
    """
    if not candidate_skill or not required_skill:
        return False
    if candidate_skill == required_skill:
        return True
    if candidate_skill in required_skill or required_skill in candidate_skill:
        return True
    return any(candidate_skill in group and required_skill in group for group in ALIAS_GROUPS)


def find_matching_skill(required_skill: str, candidate_skills: Iterable[str]) -> str | None:
    """Return the first candidate skill satisfying ``required_skill``."""
    required = normalize_skill(required_skill)
    for skill in candidate_skills:
        if is_skill_match(normalize_skill(skill), required):
            return skill
    return None


def _whole_phrase(phrase: str) -> re.Pattern[str]:
    return re.compile(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)")


def determine_proficiency(
    required_skill: str,
    candidate_skills: list[str],
    matched_with: str | None = None,
) -> Proficiency:
    """Infer a proficiency tier from keyword adjacency in the raw skill text.

    A matched skill is at least intermediate. Each candidate skill string is
    checked on its own and a pattern must match whole words, so "Expert
    JavaScript" says nothing about Java.
    """
    texts = [skill.lower() for skill in candidate_skills]
    names = {required_skill.strip().lower()}
    if matched_with:
        names.add(matched_with.strip().lower())

    tiers = (
        (Proficiency.EXPERT, c.EXPERT_PATTERNS),
        (Proficiency.ADVANCED, c.ADVANCED_PATTERNS),
    )
    for tier, patterns in tiers:
        for name in names:
            for pattern in patterns:
                phrase = _whole_phrase(pattern.format(skill=name))
                if any(phrase.search(text) for text in texts):
                    return tier
    return Proficiency.INTERMEDIATE


def calculate_skills_score(
    candidate_skills: list[str],
    required_skills: list[str],
) -> tuple[list[SkillMatch], int]:
    """Score every required skill and the overall percentage.

    Percentage = sum(points) / (required * 100) * 100; no requirements scores 0.
    """
    matches: list[SkillMatch] = []
    total_points = 0
    for required in required_skills:
        matched_with = find_matching_skill(required, candidate_skills)
        if matched_with is None:
            matches.append(SkillMatch(skill=required, matched=False))
            continue
        proficiency = determine_proficiency(required, candidate_skills, matched_with)
        points = c.PROFICIENCY_POINTS[proficiency]
        total_points += points
        matches.append(
            SkillMatch(
                skill=required,
                matched=True,
                proficiency=proficiency,
                score=points,
                matched_with=matched_with,
            )
        )

    if not required_skills:
        return matches, 0
    percentage = total_points / (len(required_skills) * 100) * 100
    return matches, round_half_up(clamp(percentage))


# ---------------------------------------------------------------------------
# Experience and education
# ---------------------------------------------------------------------------


def calculate_experience_score(years: float | None, level: str | JobLevel | None) -> int:
    band = c.EXPERIENCE_BANDS.get(coerce_level(level))
    if band is None:
        return c.UNKNOWN_LEVEL_SCORE

    years = max(0.0, float(years or 0))
    if years < band.min_years:
        return round_half_up(years / band.min_years * 50)
    if years <= band.ideal_years:
        if band.ideal_years == band.min_years:
            return 100
        span = band.ideal_years - band.min_years
        return round_half_up(50 + (years - band.min_years) / span * 50)
    if years <= band.max_years:
        return 100

    penalty = min(
        (years - band.max_years) * c.OVERQUALIFIED_PENALTY_PER_YEAR,
        c.OVERQUALIFIED_MAX_PENALTY,
    )
    return max(100 - c.OVERQUALIFIED_MAX_PENALTY, round_half_up(100 - penalty))


def highest_degree(education: list[EducationEntry]) -> str:
    """PhD > Master > Bachelor > none, matched on English and Vietnamese tokens."""
    found: set[str] = set()
    for entry in education:
        text = " ".join(part for part in (entry.degree, entry.major) if part)
        text = unicodedata.normalize("NFC", text).lower()
        for degree, tokens in c.DEGREE_TOKENS.items():
            if any(unicodedata.normalize("NFC", token) in text for token in tokens):
                found.add(degree)
    for degree in (c.PHD, c.MASTER, c.BACHELOR):
        if degree in found:
            return degree
    return c.NO_DEGREE


def calculate_education_score(education: list[EducationEntry], level: str | JobLevel | None) -> int:
    if not education:
        return c.NO_EDUCATION_SCORE
    table = c.EDUCATION_SCORES.get(coerce_level(level))
    if table is None:
        return c.UNKNOWN_LEVEL_SCORE
    return table[highest_degree(education)]


# ---------------------------------------------------------------------------
# Bands and narrative
# ---------------------------------------------------------------------------


def determine_priority(score: int) -> Priority:
    if score >= c.EXCELLENT_THRESHOLD:
        return Priority.EXCELLENT
    if score >= c.HIGH_THRESHOLD:
        return Priority.HIGH
    if score >= c.MEDIUM_THRESHOLD:
        return Priority.MEDIUM
    return Priority.LOW


def determine_recommendation(score: int) -> Recommendation:
    if score >= c.EXCELLENT_THRESHOLD:
        return Recommendation.HIGHLY_RECOMMENDED
    if score >= c.HIGH_THRESHOLD:
        return Recommendation.RECOMMENDED
    if score >= c.MEDIUM_THRESHOLD:
        return Recommendation.CONSIDER
    return Recommendation.NOT_RECOMMENDED


def build_summary(score: int, matched: int, required: int) -> str:
    skills = f"Candidate meets {matched}/{required} required skills."
    if score >= c.EXCELLENT_THRESHOLD:
        return f"Excellent match ({score}%) - {skills} Highly recommended for interview."
    if score >= c.HIGH_THRESHOLD:
        return f"Good match ({score}%) - {skills} Recommended for interview."
    if score >= c.MEDIUM_THRESHOLD:
        return f"Moderate match ({score}%) - {skills} Consider for interview."
    return f"Limited match ({score}%) - {skills} Not recommended at this time."


def _format_years(years: float) -> str:
    return f"{years:g}"


def generate_insights(
    skills_match: list[SkillMatch],
    skills_percentage: int,
    experience_score: int,
    years: float,
    level: JobLevel | None,
    degree: str,
) -> tuple[list[str], list[str]]:
    strengths: list[str] = []
    weaknesses: list[str] = []

    required = len(skills_match)
    matched = sum(1 for item in skills_match if item.matched)
    if required:
        if skills_percentage >= 80:
            strengths.append(f"Excellent skills match: {matched}/{required} required skills")
        elif skills_percentage < 50:
            weaknesses.append(f"Limited skills match: Only {matched}/{required} required skills")
        missing = [item.skill for item in skills_match if not item.matched]
        if missing:
            weaknesses.append(f"Missing skills: {', '.join(missing[:5])}")

    if level is not None:
        band = c.EXPERIENCE_BANDS[level]
        if experience_score >= 90:
            strengths.append(
                f"Strong experience: {_format_years(years)} years matches {level.value} level"
            )
        elif experience_score < 50:
            weaknesses.append(
                f"Experience gap: {_format_years(years)} years vs "
                f"{_format_years(band.min_years)}+ expected for {level.value} level"
            )

    if degree in (c.PHD, c.MASTER):
        strengths.append("Advanced degree (Master/PhD)")

    return strengths, weaknesses


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def calculate_match(
    candidate: ParsedCandidateData,
    job: JobRequirements,
    analyzed_at: datetime | None = None,
) -> MatchResult:
    """Score ``candidate`` against ``job``.

    Total = skills * 0.5 + experience * 0.3 + education * 0.2, clamped to
    [0, 100] and rounded half up.
    """
    level = coerce_level(job.level)
    years = float(candidate.years_of_experience or 0)

    skills_match, skills_percentage = calculate_skills_score(candidate.skills, job.required_skills)
    experience_score = calculate_experience_score(years, level)
    education_score = calculate_education_score(candidate.education, level)

    weighted = (
        skills_percentage * c.SKILLS_WEIGHT
        + experience_score * c.EXPERIENCE_WEIGHT
        + education_score * c.EDUCATION_WEIGHT
    )
    score = round_half_up(clamp(weighted))

    degree = highest_degree(candidate.education)
    strengths, weaknesses = generate_insights(
        skills_match, skills_percentage, experience_score, years, level, degree
    )
    matched = sum(1 for item in skills_match if item.matched)

    return MatchResult(
        score=score,
        priority=determine_priority(score),
        skills_match=skills_match,
        skills_match_percentage=skills_percentage,
        experience_score=experience_score,
        education_score=education_score,
        strengths=strengths,
        weaknesses=weaknesses,
        recommendation=determine_recommendation(score),
        summary=build_summary(score, matched, len(skills_match)),
        analyzed_at=analyzed_at or utc_now(),
    )


def suggest_status(result: MatchResult, job: JobPosting) -> ScreeningStatus:
    """Suggest an automatic screening outcome from a match result.

    Critical skills default to all required skills.
    """
    critical = job.critical_skills or job.required_skills
    if critical:
        critical_norm = {normalize_skill(skill) for skill in critical}
        matched = sum(
            1
            for item in result.skills_match
            if item.matched and normalize_skill(item.skill) in critical_norm
        )
        rate = matched / len(critical) * 100
    else:
        rate = 0.0

    if result.score >= c.AUTO_APPROVE_SCORE and rate >= c.AUTO_APPROVE_CRITICAL_RATE:
        return ScreeningStatus.APPROVED
    if result.score < c.AUTO_REJECT_SCORE and rate < c.AUTO_REJECT_CRITICAL_RATE:
        return ScreeningStatus.REJECTED
    return ScreeningStatus.REVIEWING
