"""
SQLAlchemy tables backing the log store, the summary cache and reports.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON

from db.engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SymptomLogORM(Base):
    __tablename__ = "symptom_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "log_date", name="uq_symptom_logs_user_day"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    log_date = Column(Date, nullable=False, index=True)
    pain_intensity = Column(Integer)
    # Plain strings so rows written under an older scale still load.
    energy_level = Column(String)
    mood = Column(String)
    sleep_quality = Column(Integer)
    stress_level = Column(Integer)
    notes = Column(Text)
    tags = Column("tags_json", JSON)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class InsightsSummaryORM(Base):
    __tablename__ = "insights_summaries"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "range_days", "date_from", "date_to", name="uq_insights_summary_window"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    range_days = Column(Integer, nullable=False)
    date_from = Column(Date, nullable=False)
    date_to = Column(Date, nullable=False)
    payload = Column(JSON, nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ReportORM(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    payload = Column(JSON, nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
