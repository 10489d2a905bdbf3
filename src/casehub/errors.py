"""Typed failures raised by the workflow engine and the services around it.

Every error carries a stable ``code`` for API clients and the HTTP status the
API layer renders it with. Services raise these; routes never translate them
by hand because ``main`` installs a single exception handler.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CaseHubError(Exception):
    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CaseHubError):
    """Input rejected before any write (past deadline, missing attachment...)."""

    status_code = 422
    code = "validation_error"


class AuthorizationError(CaseHubError):
    status_code = 403
    code = "not_authorized"


class NotFoundError(CaseHubError):
    status_code = 404
    code = "not_found"


class InvalidTransitionError(CaseHubError):
    """The action is not legal from the request's current status."""

    status_code = 409
    code = "invalid_transition"


class CancellationPendingError(InvalidTransitionError):
    """The cancellation initiator tried to confirm their own proposal."""

    code = "awaiting_counterparty_confirmation"


class ConcurrentUpdateError(CaseHubError):
    """The request changed between read and write (lost compare-and-swap)."""

    status_code = 409
    code = "concurrent_update"


class StoreError(CaseHubError):
    """A data-store or blob-store operation failed."""

    status_code = 503
    code = "store_unavailable"
