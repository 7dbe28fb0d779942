from .engine import Base  # noqa: F401
from .repository import (  # noqa: F401
    DuplicateLogError,
    LogStoreError,
    OwnershipError,
    RecordNotFoundError,
    add_log,
    count_logs,
    delete_log,
    get_log,
    list_logs,
    session_scope,
    update_log,
)

__all__ = [
    "Base",
    "DuplicateLogError",
    "LogStoreError",
    "OwnershipError",
    "RecordNotFoundError",
    "add_log",
    "count_logs",
    "delete_log",
    "get_log",
    "list_logs",
    "session_scope",
    "update_log",
]
