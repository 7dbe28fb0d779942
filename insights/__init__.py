from .engine import (  # noqa: F401
    COHORT_RANGES,
    PERSONAL_RANGES,
    CohortSummary,
    InsightsSummary,
    InvalidRange,
    cohort_top_tag,
    compute_cohort_patterns,
    compute_personal_insights,
    resolve_date_range,
    top_tags,
)

__all__ = [
    "COHORT_RANGES",
    "PERSONAL_RANGES",
    "CohortSummary",
    "InsightsSummary",
    "InvalidRange",
    "cohort_top_tag",
    "compute_cohort_patterns",
    "compute_personal_insights",
    "resolve_date_range",
    "top_tags",
]
