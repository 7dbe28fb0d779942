"""Doctor snapshot: a printable digest of a user's logs over a chosen period."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator, model_validator

from db import repository as repo
from insights.engine import field_average, local_now
from tools.get_entries import get_entries
from tools.health_schema import EnergyLevel, Mood, parse_log_date


class SnapshotPeriod(BaseModel):
    period_start: date
    period_end: date

    @field_validator("period_start", "period_end", mode="before")
    def _parse_dates(cls, v: date | datetime | str) -> date:
        return parse_log_date(v)

    @model_validator(mode="after")
    def _check_order(self) -> "SnapshotPeriod":
        if self.period_end < self.period_start:
            raise ValueError("period_end must be on or after period_start")
        return self


class SnapshotRow(BaseModel):
    log_date: date
    pain_intensity: Optional[int] = None
    energy_level: Optional[EnergyLevel] = None
    mood: Optional[Mood] = None


class DoctorSnapshot(BaseModel):
    period_start: date
    period_end: date
    logged_days: int
    average_pain: Optional[float] = None
    rows: List[SnapshotRow]


def build_snapshot(user_id: str, period: SnapshotPeriod) -> DoctorSnapshot:
    logs = get_entries(user_id=user_id, date_from=period.period_start, date_to=period.period_end)
    return DoctorSnapshot(
        period_start=period.period_start,
        period_end=period.period_end,
        logged_days=len(logs),
        average_pain=field_average(logs, "pain_intensity"),
        rows=[
            SnapshotRow(
                log_date=log.log_date,
                pain_intensity=log.pain_intensity,
                energy_level=log.energy_level,
                mood=log.mood,
            )
            for log in logs
        ],
    )


def create_snapshot(
    user_id: str,
    period_start: date | str,
    period_end: date | str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build the snapshot for the period and store it as a report."""

    period = SnapshotPeriod(period_start=period_start, period_end=period_end)
    snapshot = build_snapshot(user_id, period)
    return repo.add_report(
        user_id,
        period.period_start,
        period.period_end,
        snapshot.model_dump(mode="json"),
        generated_at=local_now(now),
    )
