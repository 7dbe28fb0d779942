"""
Thin CRUD wrapper around SQLAlchemy sessions.
"""
from contextlib import contextmanager
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from db.engine import database_path, get_engine, init_db
from db.models import InsightsSummaryORM, ReportORM, SymptomLogORM
from tools.health_schema import SymptomLog, SymptomLogIn, SymptomLogUpdate

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None
_engine_path: Optional[Path] = None


class LogStoreError(Exception):
    """Base class for log store failures the caller is expected to handle."""


class DuplicateLogError(LogStoreError):
    """A log already exists for this user and day."""


class RecordNotFoundError(LogStoreError):
    pass


class OwnershipError(LogStoreError):
    """The record belongs to another user."""


@contextmanager
def session_scope():
    """
    Provide a transactional database session scoped to the current engine.

    The engine is (re)built whenever the database location resolved by
    :func:`db.engine.database_path` changes, so tests can point
    ``HEALTH_DB_PATH`` at a temporary file. The context commits on success,
    rolls back and re-raises on exception, and always closes the session.
    """
    global _engine, _SessionLocal, _engine_path

    desired_path = database_path()
    if _engine is None or desired_path != _engine_path:
        if _engine is not None:
            _engine.dispose()
        _engine = get_engine(desired_path)
        _SessionLocal = sessionmaker(bind=_engine, expire_on_commit=False)
        _engine_path = desired_path
        init_db(_engine)

    db: Session = _SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _to_columns(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}


def _to_model(row: SymptomLogORM) -> SymptomLog:
    return SymptomLog.model_validate(row, from_attributes=True)


def _owned(db: Session, orm_cls, user_id: str, record_id: int):
    row = db.get(orm_cls, record_id)
    if row is None:
        raise RecordNotFoundError(f"{orm_cls.__tablename__} {record_id} not found")
    if row.user_id != str(user_id):
        raise OwnershipError(f"{orm_cls.__tablename__} {record_id} belongs to another user")
    return row


def _date_taken(db: Session, user_id: str, log_date: date, exclude_id: Optional[int] = None) -> bool:
    q = select(SymptomLogORM.id).where(
        SymptomLogORM.user_id == str(user_id),
        SymptomLogORM.log_date == log_date,
    )
    if exclude_id is not None:
        q = q.where(SymptomLogORM.id != exclude_id)
    return db.execute(q).first() is not None

# ---------- symptom logs ---------------------------------------------

def add_log(user_id: str, entry: SymptomLogIn) -> SymptomLog:
    """Insert one day's log; at most one per user and day."""
    with session_scope() as db:
        if _date_taken(db, user_id, entry.log_date):
            raise DuplicateLogError("A log for this date already exists. Use update.")
        row = SymptomLogORM(user_id=str(user_id), **_to_columns(entry.model_dump()))
        db.add(row)
        try:
            db.flush()
        except IntegrityError as exc:
            raise DuplicateLogError("A log for this date already exists. Use update.") from exc
        return _to_model(row)


def update_log(user_id: str, log_id: int, changes: SymptomLogUpdate) -> SymptomLog:
    """Apply the fields explicitly set on ``changes``."""
    values = _to_columns(changes.model_dump(exclude_unset=True))
    with session_scope() as db:
        row = _owned(db, SymptomLogORM, user_id, log_id)
        new_date = values.get("log_date")
        if new_date is None:
            values.pop("log_date", None)
        elif _date_taken(db, user_id, new_date, exclude_id=row.id):
            raise DuplicateLogError("Another log already exists for the given date.")
        if values.get("tags") is None:
            values.pop("tags", None)
        for key, value in values.items():
            setattr(row, key, value)
        db.flush()
        return _to_model(row)


def delete_log(user_id: str, log_id: int) -> None:
    with session_scope() as db:
        db.delete(_owned(db, SymptomLogORM, user_id, log_id))


def delete_user_logs(user_id: str) -> int:
    """Remove every log, cached summary and report of ``user_id``."""
    with session_scope() as db:
        removed = (
            db.query(SymptomLogORM)
            .filter(SymptomLogORM.user_id == str(user_id))
            .delete(synchronize_session=False)
        )
        db.query(InsightsSummaryORM).filter(
            InsightsSummaryORM.user_id == str(user_id)
        ).delete(synchronize_session=False)
        db.query(ReportORM).filter(ReportORM.user_id == str(user_id)).delete(
            synchronize_session=False
        )
        return removed


def get_log(user_id: str, log_id: int) -> SymptomLog | None:
    with session_scope() as db:
        row = db.get(SymptomLogORM, log_id)
        if row is None or row.user_id != str(user_id):
            return None
        return _to_model(row)


def _window(q, date_from: Optional[date], date_to: Optional[date],
            user_id: Optional[str], exclude_user_id: Optional[str]):
    if user_id is not None:
        q = q.filter(SymptomLogORM.user_id == str(user_id))
    if exclude_user_id is not None:
        q = q.filter(SymptomLogORM.user_id != str(exclude_user_id))
    if date_from is not None:
        q = q.filter(SymptomLogORM.log_date >= date_from)
    if date_to is not None:
        q = q.filter(SymptomLogORM.log_date <= date_to)
    return q


def list_logs(
    user_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    exclude_user_id: Optional[str] = None,
) -> List[SymptomLog]:
    """
    List logs with optional filters, oldest day first.

    Args:
        user_id:         Only rows owned by this user.
        date_from:       Only rows with log_date >= date_from.
        date_to:         Only rows with log_date <= date_to.
        exclude_user_id: Drop rows owned by this user (cohort queries).
    """
    with session_scope() as db:
        q = _window(db.query(SymptomLogORM), date_from, date_to, user_id, exclude_user_id)
        rows = q.order_by(SymptomLogORM.log_date.asc(), SymptomLogORM.id.asc()).all()
        return [_to_model(row) for row in rows]


def count_logs(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user_id: Optional[str] = None,
    exclude_user_id: Optional[str] = None,
) -> int:
    with session_scope() as db:
        q = _window(db.query(func.count(SymptomLogORM.id)), date_from, date_to,
                    user_id, exclude_user_id)
        return int(q.scalar() or 0)

# ---------- insights summary cache -----------------------------------

def get_cached_summary(
    user_id: str, range_days: int, date_from: date, date_to: date
) -> Optional[Tuple[Dict[str, Any], datetime]]:
    """Return ``(payload, generated_at)`` for a cached window, if any."""
    with session_scope() as db:
        row = (
            db.query(InsightsSummaryORM)
            .filter(
                InsightsSummaryORM.user_id == str(user_id),
                InsightsSummaryORM.range_days == range_days,
                InsightsSummaryORM.date_from == date_from,
                InsightsSummaryORM.date_to == date_to,
            )
            .first()
        )
        if row is None:
            return None
        return dict(row.payload or {}), row.generated_at


def store_summary(
    user_id: str,
    range_days: int,
    date_from: date,
    date_to: date,
    payload: Dict[str, Any],
    generated_at: Optional[datetime] = None,
) -> None:
    generated_at = generated_at or datetime.now(timezone.utc)
    with session_scope() as db:
        row = (
            db.query(InsightsSummaryORM)
            .filter(
                InsightsSummaryORM.user_id == str(user_id),
                InsightsSummaryORM.range_days == range_days,
                InsightsSummaryORM.date_from == date_from,
                InsightsSummaryORM.date_to == date_to,
            )
            .first()
        )
        if row is None:
            db.add(
                InsightsSummaryORM(
                    user_id=str(user_id),
                    range_days=range_days,
                    date_from=date_from,
                    date_to=date_to,
                    payload=payload,
                    generated_at=generated_at,
                )
            )
        else:
            row.payload = payload
            row.generated_at = generated_at

# ---------- reports --------------------------------------------------

def _report_to_dict(row: ReportORM) -> Dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "period_start": row.period_start,
        "period_end": row.period_end,
        "payload": row.payload,
        "generated_at": row.generated_at,
    }


def add_report(
    user_id: str,
    period_start: date,
    period_end: date,
    payload: Dict[str, Any],
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    with session_scope() as db:
        row = ReportORM(
            user_id=str(user_id),
            period_start=period_start,
            period_end=period_end,
            payload=payload,
            generated_at=generated_at or datetime.now(timezone.utc),
        )
        db.add(row)
        db.flush()
        return _report_to_dict(row)


def list_reports(user_id: str) -> List[Dict[str, Any]]:
    """Reports of ``user_id``, newest first."""
    with session_scope() as db:
        rows = (
            db.query(ReportORM)
            .filter(ReportORM.user_id == str(user_id))
            .order_by(ReportORM.generated_at.desc(), ReportORM.id.desc())
            .all()
        )
        return [_report_to_dict(row) for row in rows]


def get_report(user_id: str, report_id: int) -> Dict[str, Any] | None:
    with session_scope() as db:
        row = db.get(ReportORM, report_id)
        if row is None or row.user_id != str(user_id):
            return None
        return _report_to_dict(row)


def delete_report(user_id: str, report_id: int) -> None:
    with session_scope() as db:
        db.delete(_owned(db, ReportORM, user_id, report_id))
