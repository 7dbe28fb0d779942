from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from llama_index.llms.openai import OpenAI

from db import repository as repo
from insights.engine import (
    InsightsSummary,
    compute_personal_insights,
    local_now,
    resolve_date_range,
    validate_range,
)
from tools.get_entries import get_entries
from tools.health_schema import app_timezone
from tools.symptom_tags import ALL_SYMPTOM_TAGS

logger = logging.getLogger(__name__)

SUMMARY_RANGES = (30, 90)
MIN_LOGS_FOR_SUMMARY = 7
DEFAULT_DISCLAIMER = "This is not medical advice."

NOT_ENOUGH_DATA = {
    "summary": "Not enough recent check-ins to generate a meaningful summary yet.",
    "bullets": [
        "Add a few more daily check-ins to unlock better insights.",
        "Consistency matters more than detail.",
        "Keep notes short: tags and a number are enough.",
    ],
    "disclaimer": DEFAULT_DISCLAIMER,
}

SYSTEM_PROMPT = (
    "You are a supportive women's health symptom tracker assistant.\n"
    "Write a short, calming reflection based ONLY on the provided metrics.\n"
    "No diagnosis, no alarming language, no medical claims.\n"
    "Return STRICT JSON with keys:\n"
    "- summary: string (max ~90 words)\n"
    "- bullets: array of 3 short bullet strings\n"
    "- disclaimer: string (one sentence)\n"
)


def _format_bullets(metrics: InsightsSummary) -> List[str]:
    """Consistent fallback bullets computed straight from the metrics."""

    bullets: List[str] = []
    if metrics.pain.avg is not None:
        bullets.append(
            f"Average pain was {metrics.pain.avg:g}/10 with "
            f"{metrics.pain.high_days} higher-pain day(s)."
        )
    bullets.append(f"Low or depleted energy was logged on {metrics.energy.low_days} day(s).")
    if metrics.tags.top:
        top = metrics.tags.top[0]
        bullets.append(f"Your most frequent tag was “{top.tag}” ({top.count}x).")
    elif metrics.sleep.avg is not None:
        bullets.append(f"Average sleep quality was {metrics.sleep.avg:g}/10.")
    return bullets[:3]


def _fallback_payload(metrics: InsightsSummary) -> Dict[str, Any]:
    counts = metrics.counts
    return {
        "summary": (
            f"You checked in on {counts.logged_days} of the last {counts.range_days} days. "
            "Here is what stood out."
        ),
        "bullets": _format_bullets(metrics),
        "disclaimer": DEFAULT_DISCLAIMER,
    }


def _parse_completion(text: str) -> Dict[str, Any]:
    """Decode the model's JSON answer and keep only well-formed fields."""

    body = text.strip()
    if body.startswith("```"):
        body = body.strip("`")
        if body.lower().startswith("json"):
            body = body[4:]
    decoded = json.loads(body)
    if not isinstance(decoded, dict):
        raise ValueError("Model returned invalid JSON")

    summary = str(decoded.get("summary") or "").strip() or "No summary available."
    bullets = decoded.get("bullets")
    bullets = bullets if isinstance(bullets, list) else []
    bullets = [b.strip() for b in bullets if isinstance(b, str) and b.strip()][:3]
    disclaimer = str(decoded.get("disclaimer") or "").strip() or DEFAULT_DISCLAIMER
    return {"summary": summary, "bullets": bullets, "disclaimer": disclaimer}


def _ask_model(context: Dict[str, Any]) -> Dict[str, Any]:
    llm = OpenAI(model=os.getenv("SUMMARY_MODEL", "gpt-4o-mini"), temperature=0.4)
    prompt = SYSTEM_PROMPT + "\n" + json.dumps(context, ensure_ascii=False)
    response = llm.complete(prompt)
    return _parse_completion(response.text)


def tool_summarize(
    user_id: str, range_days: int = 30, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Create a short, calming reflection on the user's recent check-ins.

    Results are cached per user and window. With fewer than
    ``MIN_LOGS_FOR_SUMMARY`` logs a fixed encouragement is returned (and
    cached). Otherwise the window's metrics are sent to the language model;
    if the call or its JSON fails, bullets are built from the metrics instead
    and nothing is cached so the next request retries.

    Returns:
        dict: ``{"data": {summary, bullets, disclaimer}, "meta": {...}}``.

    Raises:
        insights.engine.InvalidRange: ``range_days`` is not 30 or 90.
    """
    validate_range(range_days, SUMMARY_RANGES)
    tz = app_timezone()
    now = local_now(now, tz)
    date_from, date_to = resolve_date_range(range_days, now=now, tz=tz)

    def envelope(data: Dict[str, Any], generated_at: datetime, cached: bool) -> Dict[str, Any]:
        return {
            "data": data,
            "meta": {
                "range_days": range_days,
                "date_from": date_from.isoformat(),
                "date_to": date_to.isoformat(),
                "timezone": tz.key,
                "generated_at": generated_at.isoformat(),
                "cached": cached,
            },
        }

    cached = repo.get_cached_summary(user_id, range_days, date_from, date_to)
    if cached is not None:
        payload, generated_at = cached
        if {"summary", "bullets", "disclaimer"} <= set(payload):
            return envelope(payload, generated_at or now, True)

    rows = get_entries(user_id=user_id, date_from=date_from, date_to=date_to)
    if len(rows) < MIN_LOGS_FOR_SUMMARY:
        payload = dict(NOT_ENOUGH_DATA)
        repo.store_summary(user_id, range_days, date_from, date_to, payload, now)
        return envelope(payload, now, False)

    metrics = compute_personal_insights(
        rows, range_days, date_from, date_to, vocabulary=ALL_SYMPTOM_TAGS
    )
    context = {
        "range_days": range_days,
        "date_from": date_from.isoformat(),
        "date_to": date_to.isoformat(),
        "metrics": metrics.model_dump(mode="json"),
    }
    try:
        payload = _ask_model(context)
    except Exception as exc:
        logger.warning("Summary generation failed (%s); using metric bullets.", exc)
        return envelope(_fallback_payload(metrics), now, False)

    repo.store_summary(user_id, range_days, date_from, date_to, payload, now)
    return envelope(payload, now, False)
