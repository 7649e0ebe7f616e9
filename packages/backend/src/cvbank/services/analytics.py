"""Candidate analytics for the admin dashboard and candidate list.

Pure functions over the UserProfile list the profile repository
assembles; nothing here touches a store.
"""

import math
from collections import Counter
from datetime import date
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from cvbank.schemas.profile import ProfessionalExperience, UserProfile

DAYS_PER_YEAR = 365.25
SUMMARY_PREVIEW_CHARS = 100

NO_EXPERIENCE = "No experience"
EXPERIENCE_BUCKETS = (
    (2, "0-2 years"),
    (5, "3-5 years"),
    (10, "6-10 years"),
)
OVER_TEN = "10+ years"


class SkillCount(BaseModel):
    name: str
    count: int


class DashboardStats(BaseModel):
    total_candidates: int
    experience_distribution: dict[str, int]
    top_skills: list[SkillCount]


class CandidateSummary(BaseModel):
    id: str
    name: str
    email: str
    summary: str
    experience_years: int
    skills: list[str] = Field(default_factory=list)


def experience_years(
    experiences: Iterable[ProfessionalExperience], today: Optional[date] = None
) -> float:
    """Total years across experiences; an open end date counts up to today."""
    today = today or date.today()
    total = 0.0
    for exp in experiences:
        end = exp.end_date or today
        total += abs((end - exp.start_date).days) / DAYS_PER_YEAR
    return total


def _bucket(years: float) -> str:
    for upper, label in EXPERIENCE_BUCKETS:
        if years <= upper:
            return label
    return OVER_TEN


def experience_distribution(
    profiles: Iterable[UserProfile], today: Optional[date] = None
) -> dict[str, int]:
    distribution = {NO_EXPERIENCE: 0}
    distribution.update({label: 0 for _, label in EXPERIENCE_BUCKETS})
    distribution[OVER_TEN] = 0

    for up in profiles:
        experiences = up.profile.professional_experiences
        if not experiences:
            distribution[NO_EXPERIENCE] += 1
            continue
        distribution[_bucket(experience_years(experiences, today))] += 1
    return distribution


def top_skills(profiles: Iterable[UserProfile], limit: int = 5) -> list[SkillCount]:
    """Most frequent tool names across candidates, first-seen wins ties."""
    counts = Counter(tool.name for up in profiles for tool in up.profile.tools)
    return [SkillCount(name=name, count=n) for name, n in counts.most_common(limit)]


def dashboard_stats(
    profiles: list[UserProfile], today: Optional[date] = None
) -> DashboardStats:
    return DashboardStats(
        total_candidates=len(profiles),
        experience_distribution=experience_distribution(profiles, today),
        top_skills=top_skills(profiles),
    )


def candidate_summaries(
    profiles: Iterable[UserProfile], today: Optional[date] = None
) -> list[CandidateSummary]:
    summaries = []
    for up in profiles:
        summary = up.profile.personal_data.summary
        if len(summary) > SUMMARY_PREVIEW_CHARS:
            summary = summary[:SUMMARY_PREVIEW_CHARS] + "..."
        summaries.append(
            CandidateSummary(
                id=up.user.id,
                name=up.user.name,
                email=up.user.email,
                summary=summary,
                experience_years=math.floor(
                    experience_years(up.profile.professional_experiences, today)
                ),
                skills=[t.name for t in up.profile.tools],
            )
        )
    return summaries


def parse_experience_range(value: str) -> tuple[int, Optional[int]]:
    """'3-5' -> (3, 5); '11+' or '11-' -> (11, None). Raises ValueError."""
    value = value.strip()
    if value.endswith("+"):
        return int(value[:-1]), None
    low, sep, high = value.partition("-")
    if not sep:
        raise ValueError(f"Invalid experience range: {value!r}")
    return int(low), (int(high) if high else None)


def filter_candidates(
    candidates: Iterable[CandidateSummary],
    search: str = "",
    experience_range: str = "all",
) -> list[CandidateSummary]:
    """Case-insensitive search over name, email and skills, then range filter."""
    needle = search.casefold()
    bounds = None if experience_range == "all" else parse_experience_range(experience_range)

    result = []
    for c in candidates:
        if needle and not (
            needle in c.name.casefold()
            or needle in c.email.casefold()
            or any(needle in s.casefold() for s in c.skills)
        ):
            continue
        if bounds is not None:
            low, high = bounds
            if c.experience_years < low or (high is not None and c.experience_years > high):
                continue
        result.append(c)
    return result
