"""Error taxonomy shared by the record stores and the leave sagas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx


class DashboardError(Exception):
    """Base class; ``kind`` is the stable identifier surfaced to callers."""

    kind = "DashboardError"

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "context": self.context}


class MissingInput(DashboardError):
    kind = "MissingInput"


class RecordNotFound(DashboardError):
    kind = "RecordNotFound"

    def __init__(self, table: str, record_id: str) -> None:
        super().__init__(
            f"Record {record_id} was not found in {table}",
            context={"table": table, "record_id": record_id},
        )
        self.table = table
        self.record_id = record_id


class NotAuthorized(DashboardError):
    """The record exists but does not belong to the caller."""

    kind = "NotAuthorized"


class StoreFault(DashboardError):
    """Transient backend or network failure; safe to retry."""

    kind = "StoreFault"

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        original: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, context={"operation": operation, **(context or {})})
        self.operation = operation
        self.status_code = status_code
        self.original = original
        self.occurred_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["status_code"] = self.status_code
        payload["occurred_at"] = self.occurred_at.isoformat()
        if self.original is not None:
            payload["original"] = str(self.original)
        return payload


def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return getattr(error, "status_code", None)


def describe_store_error(error: BaseException, operation: str) -> str:
    """Return a user-facing message for a failed store call."""
    status_code = _status_code(error)
    if status_code == 429:
        return "Rate limit exceeded. Please try again in a few moments."
    if status_code in (401, 403):
        return "Authentication failed. Please contact support."
    if status_code == 404:
        return "The requested data could not be found."
    if isinstance(error, httpx.TimeoutException):
        return "The request timed out. Please try again."
    if isinstance(error, (httpx.ConnectError, httpx.NetworkError)):
        return "Network error. Please check your connection."
    if isinstance(error, ValueError) and "JSON" in str(error):
        return "Invalid response from server. Please try again."
    return f"An error occurred while {operation}. Please try again or contact support."


def to_store_fault(error: BaseException, operation: str, **context: Any) -> StoreFault:
    if isinstance(error, StoreFault):
        return error
    return StoreFault(
        describe_store_error(error, operation),
        operation=operation,
        status_code=_status_code(error),
        context=context,
        original=error,
    )


__all__ = [
    "DashboardError",
    "MissingInput",
    "NotAuthorized",
    "RecordNotFound",
    "StoreFault",
    "describe_store_error",
    "to_store_fault",
]
