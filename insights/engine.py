"""
Aggregation of symptom logs into personal insights and community patterns.

Everything here is a pure computation over rows that were already fetched
and scope-filtered by the caller: no I/O, no shared state. Rows may be
``SymptomLog`` models, ORM rows or plain mappings.
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, timedelta, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from tools.health_schema import (
    EnergyLevel,
    Mood,
    app_timezone,
    coerce_score,
    decode_tags,
    normalize_tag,
    parse_log_date,
    stored_member,
)
from tools.symptom_tags import ALL_SYMPTOM_TAGS, COMMUNITY_TAG_SHORTLIST

__all__ = [
    "COHORT_DISCLAIMER",
    "COHORT_FALLBACK_PATTERNS",
    "COHORT_MIN_LOGS",
    "COHORT_RANGES",
    "PERSONAL_RANGES",
    "CohortSummary",
    "InsightsSummary",
    "InvalidRange",
    "TagCount",
    "cohort_top_tag",
    "compute_cohort_patterns",
    "compute_personal_insights",
    "field_average",
    "local_now",
    "resolve_date_range",
    "top_tags",
    "validate_range",
]

PERSONAL_RANGES: Tuple[int, ...] = (7, 30, 90)
COHORT_RANGES: Tuple[int, ...] = (30, 90)
COHORT_MIN_LOGS = 25

HIGH_PAIN = 6
HIGH_STRESS = 7
LOW_ENERGY = frozenset({EnergyLevel.depleted, EnergyLevel.low})
TOP_TAG_LIMIT = 8

COHORT_DISCLAIMER = (
    "Community patterns are anonymized and generalized. "
    "They do not provide medical advice."
)
COHORT_FALLBACK_PATTERNS: Tuple[str, ...] = (
    "Many users notice symptom intensity increases in the days leading up to their period.",
    "Fatigue and low energy are commonly logged on the same days as cramps or bloating.",
    "Mood shifts are frequently reported during weeks with recurring symptom flare-ups.",
)
_GENERIC_TAG_PATTERN = (
    "Symptom tags often cluster over several days, especially when multiple symptoms overlap."
)


class InvalidRange(ValueError):
    """Requested lookback window is not offered for this kind of summary."""

    def __init__(self, range_days: Any, allowed: Sequence[int]):
        self.range_days = range_days
        self.allowed = tuple(allowed)
        options = ", ".join(str(v) for v in self.allowed)
        super().__init__(f"Invalid range {range_days!r}. Allowed: {options}.")


# ---------- output models --------------------------------------------

class Counts(BaseModel):
    logged_days: int
    range_days: int


class PainStats(BaseModel):
    avg: Optional[float] = None
    max: Optional[int] = None
    high_days: int = 0


class EnergyStats(BaseModel):
    low_days: int = 0
    distribution: Dict[str, int]


class MoodStats(BaseModel):
    distribution: Dict[str, int]


class StressStats(BaseModel):
    avg: Optional[float] = None
    high_days: int = 0


class SleepStats(BaseModel):
    avg: Optional[float] = None


class TagCount(BaseModel):
    tag: str
    count: int


class TagStats(BaseModel):
    top: List[TagCount] = Field(default_factory=list)


class InsightsSummary(BaseModel):
    """Statistics for one user's window of logs."""

    counts: Counts
    pain: PainStats
    energy: EnergyStats
    mood: MoodStats
    stress: StressStats
    sleep: SleepStats
    tags: TagStats


class CohortMeta(BaseModel):
    range_days: int
    date_from: date
    date_to: date
    timezone: str
    generated_at: datetime
    cached: bool = False
    # Never populated: the size of the cohort is not disclosed.
    cohort_size: Optional[int] = None


class CohortSummary(BaseModel):
    """Anonymised patterns across every user except the requester."""

    computed: bool
    patterns: List[str]
    disclaimer: str = COHORT_DISCLAIMER
    high_pain_pct: Optional[int] = None
    low_energy_pct: Optional[int] = None
    top_tag: Optional[str] = None
    meta: CohortMeta


# ---------- helpers --------------------------------------------------

def _field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def _tags_of(row: Any) -> List[Any]:
    raw = _field(row, "tags")
    if raw is None:
        raw = _field(row, "tags_json")
    return decode_tags(raw)


def _log_date(row: Any) -> Optional[date]:
    value = _field(row, "log_date")
    if value is None:
        return None
    try:
        return parse_log_date(value)
    except (TypeError, ValueError):
        return None


def _within(rows: Iterable[Any], date_from: Optional[date], date_to: Optional[date]) -> List[Any]:
    """Drop rows whose ``log_date`` is known and falls outside the window."""
    kept = []
    for row in rows:
        day = _log_date(row)
        if day is not None:
            if date_from is not None and day < date_from:
                continue
            if date_to is not None and day > date_to:
                continue
        kept.append(row)
    return kept


def _mean(values: List[int]) -> Optional[float]:
    if not values:
        return None
    avg = Decimal(sum(values)) / Decimal(len(values))
    return float(avg.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def field_average(rows: Iterable[Any], name: str) -> Optional[float]:
    """Rounded mean of a 0-10 metric over the rows where it is present."""
    return _mean([v for v in (coerce_score(_field(row, name)) for row in rows) if v is not None])


def _percent(part: int, total: int) -> int:
    pct = Decimal(part) * 100 / Decimal(total)
    return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _tz_name(tz: tzinfo) -> str:
    return getattr(tz, "key", None) or str(tz)


def validate_range(range_days: Any, allowed: Sequence[int]) -> int:
    if isinstance(range_days, bool) or not isinstance(range_days, int):
        raise InvalidRange(range_days, allowed)
    if range_days not in allowed:
        raise InvalidRange(range_days, allowed)
    return range_days


def local_now(now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> datetime:
    """Current time (or ``now``) expressed in the canonical timezone."""
    tz = tz or app_timezone()
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def resolve_date_range(
    range_days: int,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Tuple[date, date]:
    """Return the inclusive ``(date_from, date_to)`` window ending today.

    "Today" is ``now`` truncated to a day in the canonical timezone; naive
    datetimes are taken to already be in that timezone.
    """
    date_to = local_now(now, tz).date()
    return date_to - timedelta(days=range_days - 1), date_to


# ---------- personal insights ----------------------------------------

def top_tags(
    rows: Iterable[Any],
    limit: int = TOP_TAG_LIMIT,
    vocabulary: Optional[Iterable[str]] = ALL_SYMPTOM_TAGS,
) -> List[TagCount]:
    """Most frequent tags across ``rows``.

    Tags are lower-cased and trimmed before counting, and tags outside
    ``vocabulary`` are left out of the ranking (``None`` ranks every tag).
    Equal counts keep the order in which the tags were first seen.
    """
    allowed = None if vocabulary is None else {normalize_tag(t) for t in vocabulary}
    counts: Dict[str, int] = {}
    for row in rows:
        for raw in _tags_of(row):
            tag = normalize_tag(raw)
            if not tag:
                continue
            if allowed is not None and tag not in allowed:
                continue
            counts[tag] = counts.get(tag, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [TagCount(tag=tag, count=count) for tag, count in ranked[:limit]]


def compute_personal_insights(
    rows: Iterable[Any],
    range_days: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    vocabulary: Optional[Iterable[str]] = ALL_SYMPTOM_TAGS,
) -> InsightsSummary:
    """Summarise one user's logs over ``[date_from, date_to]``.

    Raises:
        InvalidRange: ``range_days`` is not one of ``PERSONAL_RANGES``.
    """
    validate_range(range_days, PERSONAL_RANGES)
    logs = _within(rows, date_from, date_to)

    pain: List[int] = []
    stress: List[int] = []
    sleep: List[int] = []
    energy_counts = {level.value: 0 for level in EnergyLevel}
    mood_counts = {m.value: 0 for m in Mood}

    for row in logs:
        p = coerce_score(_field(row, "pain_intensity"))
        if p is not None:
            pain.append(p)
        s = coerce_score(_field(row, "stress_level"))
        if s is not None:
            stress.append(s)
        q = coerce_score(_field(row, "sleep_quality"))
        if q is not None:
            sleep.append(q)

        energy = stored_member(EnergyLevel, _field(row, "energy_level"))
        if energy is not None:
            energy_counts[energy.value] += 1
        mood = stored_member(Mood, _field(row, "mood"))
        if mood is not None:
            mood_counts[mood.value] += 1

    return InsightsSummary(
        counts=Counts(logged_days=len(logs), range_days=range_days),
        pain=PainStats(
            avg=_mean(pain),
            max=max(pain) if pain else None,
            high_days=sum(1 for v in pain if v >= HIGH_PAIN),
        ),
        energy=EnergyStats(
            low_days=sum(energy_counts[level.value] for level in LOW_ENERGY),
            distribution=energy_counts,
        ),
        mood=MoodStats(distribution=mood_counts),
        stress=StressStats(
            avg=_mean(stress),
            high_days=sum(1 for v in stress if v >= HIGH_STRESS),
        ),
        sleep=SleepStats(avg=_mean(sleep)),
        tags=TagStats(top=top_tags(logs, vocabulary=vocabulary)),
    )


# ---------- community patterns ---------------------------------------

def cohort_top_tag(
    rows: Iterable[Any],
    candidate_tags: Sequence[str] = COMMUNITY_TAG_SHORTLIST,
) -> Optional[str]:
    """Candidate tag present on the most rows, or ``None`` if none appear.

    Only ``candidate_tags`` are considered, each counted once per row; on a
    tie the candidate listed first wins.
    """
    per_row = [{normalize_tag(t) for t in _tags_of(row)} for row in rows]
    best: Optional[str] = None
    best_count = 0
    for candidate in candidate_tags:
        tag = normalize_tag(candidate)
        if not tag:
            continue
        count = sum(1 for tags in per_row if tag in tags)
        if count > best_count:
            best, best_count = tag, count
    return best


def compute_cohort_patterns(
    rows: Iterable[Any],
    total_logs_in_range: Optional[int],
    range_days: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    requester_excluded: bool = True,
    candidate_tags: Sequence[str] = COMMUNITY_TAG_SHORTLIST,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> CohortSummary:
    """Anonymised prevalence patterns over other users' logs.

    Below ``COHORT_MIN_LOGS`` logs, or when the caller cannot guarantee the
    requester's own rows were left out, no percentage is computed and the
    fixed fallback sentences are returned instead.

    Raises:
        InvalidRange: ``range_days`` is not one of ``COHORT_RANGES``.
    """
    validate_range(range_days, COHORT_RANGES)
    tz = tz or app_timezone()
    now = local_now(now, tz)
    if date_from is None or date_to is None:
        date_from, date_to = resolve_date_range(range_days, now=now, tz=tz)

    meta = CohortMeta(
        range_days=range_days,
        date_from=date_from,
        date_to=date_to,
        timezone=_tz_name(tz),
        generated_at=now,
    )

    logs = _within(rows, date_from, date_to)
    total = len(logs) if total_logs_in_range is None else int(total_logs_in_range)

    if not requester_excluded or total < COHORT_MIN_LOGS:
        return CohortSummary(
            computed=False,
            patterns=list(COHORT_FALLBACK_PATTERNS),
            meta=meta,
        )

    high_pain = 0
    low_energy = 0
    for row in logs:
        p = coerce_score(_field(row, "pain_intensity"))
        if p is not None and p >= HIGH_PAIN:
            high_pain += 1
        if stored_member(EnergyLevel, _field(row, "energy_level")) in LOW_ENERGY:
            low_energy += 1

    high_pain_pct = _percent(high_pain, total)
    low_energy_pct = _percent(low_energy, total)
    tag = cohort_top_tag(logs, candidate_tags)

    patterns = [
        f"In this period, about {high_pain_pct}% of check-ins include higher pain levels (6+).",
        f"Low energy is common: around {low_energy_pct}% of check-ins report low or depleted energy.",
        (
            f"A frequently logged symptom tag is “{tag}”, appearing across many check-ins."
            if tag
            else _GENERIC_TAG_PATTERN
        ),
    ]

    return CohortSummary(
        computed=True,
        patterns=patterns,
        high_pain_pct=high_pain_pct,
        low_energy_pct=low_energy_pct,
        top_tag=tag,
        meta=meta,
    )
