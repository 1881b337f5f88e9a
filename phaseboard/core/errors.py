from __future__ import annotations

from typing import Any, Dict, Optional


class PivotError(Exception):
    """Base class for failures raised by the pivot pipeline."""

    status_code = 500
    code = "INTERNAL"
    retryable = False

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def public_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.retryable:
            detail["retryable"] = True
        return detail


class InvalidArgument(PivotError):
    status_code = 400
    code = "INVALID_ARGUMENT"


class NotFound(PivotError):
    status_code = 404
    code = "NOT_FOUND"


class Unavailable(PivotError):
    status_code = 503
    code = "UNAVAILABLE"
    retryable = True

    def __init__(self, message: str = "Asset pivot query timed out; please retry", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ResultTooLarge(PivotError):
    status_code = 400
    code = "QUERY_TOO_COMPLEX"

    def __init__(self, message: str, *, limit: int, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.limit = limit

    def public_detail(self) -> Dict[str, Any]:
        detail = super().public_detail()
        detail["max_items"] = self.limit
        return detail


class InternalError(PivotError):
    def __init__(self, message: str = "Asset pivot query failed", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
