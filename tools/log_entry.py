from __future__ import annotations

import logging
from typing import Any, Mapping

from db import repository as repo
from tools.health_schema import SymptomLog, SymptomLogIn, SymptomLogUpdate

logger = logging.getLogger(__name__)


def create_log(user_id: str, payload: SymptomLogIn | Mapping[str, Any]) -> SymptomLog:
    """
    Record one day of symptom data for a user.

    Parameters:
        user_id (str): Owner of the new log.
        payload: A ``SymptomLogIn`` or a mapping that validates into one.

    Returns:
        SymptomLog: The stored row.

    Raises:
        pydantic.ValidationError: The payload is malformed.
        db.repository.DuplicateLogError: The user already logged that day.
    """
    entry = payload if isinstance(payload, SymptomLogIn) else SymptomLogIn.model_validate(payload)
    try:
        saved = repo.add_log(user_id, entry)
    except repo.DuplicateLogError:
        logger.info("Duplicate log for user %s on %s", user_id, entry.log_date)
        raise
    except Exception as exc:
        logger.error("Failed to store symptom log: %s", exc)
        raise
    return saved


def update_log(user_id: str, log_id: int, payload: SymptomLogUpdate | Mapping[str, Any]) -> SymptomLog:
    """Apply a partial update to one of the user's logs."""

    changes = (
        payload
        if isinstance(payload, SymptomLogUpdate)
        else SymptomLogUpdate.model_validate(payload)
    )
    try:
        return repo.update_log(user_id, log_id, changes)
    except repo.LogStoreError:
        raise
    except Exception as exc:
        logger.error("Failed to update symptom log %s: %s", log_id, exc)
        raise


def delete_log(user_id: str, log_id: int) -> None:
    repo.delete_log(user_id, log_id)


def delete_account_data(user_id: str) -> int:
    """Cascade used when a user deletes their account; returns removed log count."""

    removed = repo.delete_user_logs(user_id)
    logger.info("Removed %d logs for deleted user %s", removed, user_id)
    return removed
