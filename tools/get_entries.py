from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from db.repository import count_logs, list_logs
from insights.engine import (
    COHORT_MIN_LOGS,
    COHORT_RANGES,
    PERSONAL_RANGES,
    compute_cohort_patterns,
    compute_personal_insights,
    local_now,
    resolve_date_range,
    validate_range,
)
from tools.health_schema import SymptomLog, app_timezone
from tools.symptom_tags import ALL_SYMPTOM_TAGS


def get_entries(
    user_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> List[SymptomLog]:
    """Return the user's logs within the inclusive ``[date_from, date_to]`` window.

    Filtering is delegated to :func:`db.repository.list_logs` so that SQL handles it.
    """

    return list_logs(user_id=user_id, date_from=date_from, date_to=date_to)


def personal_insights(
    user_id: str, range_days: int, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Insights for the user's last ``range_days`` days as a ``{data, meta}`` envelope.

    Raises:
        insights.engine.InvalidRange: ``range_days`` is not 7, 30 or 90.
    """

    validate_range(range_days, PERSONAL_RANGES)
    tz = app_timezone()
    now = local_now(now, tz)
    date_from, date_to = resolve_date_range(range_days, now=now, tz=tz)
    rows = get_entries(user_id=user_id, date_from=date_from, date_to=date_to)
    summary = compute_personal_insights(
        rows, range_days, date_from, date_to, vocabulary=ALL_SYMPTOM_TAGS
    )
    return {
        "data": summary.model_dump(mode="json"),
        "meta": {
            "range_days": range_days,
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "timezone": tz.key,
            "generated_at": now.isoformat(),
        },
    }


def community_patterns(
    user_id: str, range_days: int, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Anonymised patterns over every other user's logs, as ``{data, meta}``.

    Raises:
        insights.engine.InvalidRange: ``range_days`` is not 30 or 90.
    """

    validate_range(range_days, COHORT_RANGES)
    tz = app_timezone()
    now = local_now(now, tz)
    date_from, date_to = resolve_date_range(range_days, now=now, tz=tz)

    total = count_logs(date_from=date_from, date_to=date_to, exclude_user_id=user_id)
    rows: List[SymptomLog] = []
    if total >= COHORT_MIN_LOGS:
        rows = list_logs(date_from=date_from, date_to=date_to, exclude_user_id=user_id)

    summary = compute_cohort_patterns(
        rows,
        total_logs_in_range=total,
        range_days=range_days,
        date_from=date_from,
        date_to=date_to,
        requester_excluded=True,
        now=now,
        tz=tz,
    )
    body = summary.model_dump(mode="json")
    meta = body.pop("meta")
    return {"data": body, "meta": meta}
