"""Domain errors raised by the engine and rendered by the HTTP layer.

Admission decisions never raise for a well-formed request; these errors
cover rule configuration, lookups and admin authentication.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured context attached to an error response."""

    rule_id: str
    field: str
    errors: list[dict[str, Any]]
    hint: str


@dataclass
class AppError(Exception):
    """Base error with a stable machine-readable ``code``.

    Attributes:
        code: Stable error code, e.g. ``invalid_rule``.
        message: Human-readable message.
        details: Optional structured details.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self, request_id: str | None) -> dict[str, Any]:
        """Body of the ``error`` object in API responses."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message, "request_id": request_id}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationAppError(AppError):
    """Invalid rule configuration or input."""


class NotFoundAppError(AppError):
    """Unknown rule id."""


class AuthenticationAppError(AppError):
    """Missing, unknown or unconfigured admin API key."""
