# server/main.py
from __future__ import annotations

import logging
import os
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from db import repository as repo
from db.repository import DuplicateLogError, OwnershipError, RecordNotFoundError
from insights.engine import COHORT_RANGES, PERSONAL_RANGES, InvalidRange
from tools.get_entries import community_patterns, get_entries, personal_insights
from tools.health_schema import EnergyLevel, Mood, SymptomLogIn, SymptomLogUpdate
from tools.log_entry import create_log, delete_account_data, delete_log, update_log
from tools.snapshot import create_snapshot
from tools.summarize import SUMMARY_RANGES, tool_summarize
from tools.symptom_tags import SYMPTOM_TAGS

app = FastAPI(title="HealthTrack Insights API", version="0.2.0")

# --- CORS (configurable) ---
def _parse_cors_origins(env_val: str | None):
    """
    Parse comma-separated origins. If env is None or '*', return ['*'] (dev).
    Otherwise, return a cleaned list like ['https://app.example.com', 'https://example.com'].
    """
    if not env_val or env_val.strip() == "*":
        return ["*"]
    parts = [p.strip() for p in env_val.split(",")]
    return [p for p in parts if p] or ["*"]

_CORS_ORIGINS = _parse_cors_origins(os.getenv("CORS_ORIGINS"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_credentials=False,   # using Bearer token; no cookies needed
    allow_methods=["*"],
    allow_headers=["*"],       # includes 'Authorization'
)

logger = logging.getLogger(__name__)
if _CORS_ORIGINS == ["*"]:
    logger.warning("CORS is permissive ('*'). This is fine for dev but restrict in production via CORS_ORIGINS.")
else:
    logger.info("CORS allowed origins: %s", _CORS_ORIGINS)

# --- Simple Bearer token auth ---
security = HTTPBearer(auto_error=False)
API_TOKEN = os.getenv("API_TOKEN")

def auth_guard(creds: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    """
    Enforces optional Bearer token authentication based on the configured API_TOKEN.

    If API_TOKEN is not set, allows access. If API_TOKEN is set, requires an incoming Bearer token that matches API_TOKEN and raises HTTP 401 Unauthorized on mismatch.
    """
    if not API_TOKEN:
        return True
    if creds is None or creds.scheme.lower() != "bearer" or creds.credentials != API_TOKEN:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return True

# --- Error translation ---
@app.exception_handler(InvalidRange)
async def _invalid_range(request: Request, exc: InvalidRange):
    return JSONResponse(status_code=422, content={"message": str(exc)})


@app.exception_handler(ValidationError)
async def _invalid_payload(request: Request, exc: ValidationError):
    errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
    return JSONResponse(status_code=422, content={"message": "Validation failed", "errors": errors})


@app.exception_handler(DuplicateLogError)
async def _duplicate(request: Request, exc: DuplicateLogError):
    return JSONResponse(status_code=409, content={"message": str(exc)})


@app.exception_handler(RecordNotFoundError)
async def _not_found(request: Request, exc: RecordNotFoundError):
    return JSONResponse(status_code=404, content={"message": "Not found"})


@app.exception_handler(OwnershipError)
async def _forbidden(request: Request, exc: OwnershipError):
    return JSONResponse(status_code=403, content={"message": "Forbidden"})

# --- Helpers ---
def _parse_day(value: Optional[str], name: str) -> Optional[date]:
    """
    Parse an ISO 8601 calendar date (``YYYY-MM-DD``), or return None when no input is provided.

    Raises:
        HTTPException: 400 Bad Request if the value is not a valid date.
    """
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid '{name}' date format. Use YYYY-MM-DD.")

# --- Routes ---
@app.get("/health")
def health():
    """
    Indicate whether the service is healthy.
    """
    return {"ok": True}


@app.get("/meta")
def meta():
    """Enumerations the client needs to render the log form."""
    return {
        "moods": [m.value for m in Mood],
        "energy_levels": [e.value for e in EnergyLevel],
        "tags": {category: list(tags) for category, tags in SYMPTOM_TAGS.items()},
        "ranges": {
            "insights": list(PERSONAL_RANGES),
            "summary": list(SUMMARY_RANGES),
            "community": list(COHORT_RANGES),
        },
    }


class LogRequest(SymptomLogIn):
    user_id: str


@app.post("/symptoms", status_code=201)
def api_create_log(payload: LogRequest, _auth=Depends(auth_guard)):
    """Record one day for a user; 409 if that day is already logged."""
    entry = SymptomLogIn.model_validate(payload.model_dump(exclude={"user_id"}))
    return {"data": create_log(payload.user_id, entry)}


@app.get("/symptoms")
def api_list_logs(
    user_id: str,
    date_from: Optional[str] = Query(default=None, alias="from", description="YYYY-MM-DD, inclusive"),
    date_to: Optional[str] = Query(default=None, alias="to", description="YYYY-MM-DD, inclusive"),
    _auth=Depends(auth_guard),
):
    """List the user's logs, oldest day first."""
    start = _parse_day(date_from, "from")
    end = _parse_day(date_to, "to")
    if start and end and end < start:
        raise HTTPException(status_code=400, detail="'to' must be on or after 'from'.")
    entries = get_entries(user_id=user_id, date_from=start, date_to=end)
    return {"data": entries, "meta": {"total": len(entries)}}


@app.get("/symptoms/{log_id}")
def api_get_log(log_id: int, user_id: str, _auth=Depends(auth_guard)):
    entry = repo.get_log(user_id, log_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Not found")
    return {"data": entry}


@app.patch("/symptoms/{log_id}")
def api_update_log(log_id: int, user_id: str, payload: SymptomLogUpdate, _auth=Depends(auth_guard)):
    return {"data": update_log(user_id, log_id, payload)}


@app.delete("/symptoms/{log_id}", status_code=204)
def api_delete_log(log_id: int, user_id: str, _auth=Depends(auth_guard)):
    delete_log(user_id, log_id)
    return Response(status_code=204)


@app.delete("/users/{user_id}/symptoms")
def api_delete_account_data(user_id: str, _auth=Depends(auth_guard)):
    """Cascade for account deletion."""
    return {"deleted": delete_account_data(user_id)}


@app.get("/insights")
def api_insights(
    user_id: str,
    range_days: int = Query(default=30, alias="range"),
    _auth=Depends(auth_guard),
):
    """Personal statistics over the last 7, 30 or 90 days."""
    return personal_insights(user_id=user_id, range_days=range_days)


class SummaryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str
    range_days: int = Field(default=30, alias="range")


@app.post("/insights/summary")
def api_insights_summary(payload: SummaryRequest, _auth=Depends(auth_guard)):
    """
    Short AI reflection on the user's recent check-ins.

    Returns:
        dict: ``data`` with summary, bullets and disclaimer; ``meta`` with the window and cache flag.
    """
    try:
        return tool_summarize(user_id=payload.user_id, range_days=payload.range_days)
    except InvalidRange:
        raise
    except Exception as exc:
        logger.exception("Summary endpoint failed")
        raise HTTPException(status_code=500, detail="Failed to generate summary") from exc


@app.get("/community-patterns")
def api_community_patterns(
    user_id: str,
    range_days: int = Query(default=30, alias="range"),
    _auth=Depends(auth_guard),
):
    """Anonymised patterns across every other user (30 or 90 days)."""
    return community_patterns(user_id=user_id, range_days=range_days)


class ReportRequest(BaseModel):
    user_id: str
    period_start: date
    period_end: date


@app.post("/reports", status_code=201)
def api_create_report(payload: ReportRequest, _auth=Depends(auth_guard)):
    """Build and store a doctor snapshot for the requested period."""
    return {"data": create_snapshot(payload.user_id, payload.period_start, payload.period_end)}


@app.get("/reports")
def api_list_reports(user_id: str, _auth=Depends(auth_guard)):
    return {"data": repo.list_reports(user_id)}


@app.get("/reports/{report_id}")
def api_get_report(report_id: int, user_id: str, _auth=Depends(auth_guard)):
    report = repo.get_report(user_id, report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Not found")
    return {"data": report}


@app.delete("/reports/{report_id}", status_code=204)
def api_delete_report(report_id: int, user_id: str, _auth=Depends(auth_guard)):
    repo.delete_report(user_id, report_id)
    return Response(status_code=204)
