"""Domain-specific exceptions for call operations.

These exceptions are safe to import from API layers without pulling in provider SDKs.
"""

from __future__ import annotations


class CallError(Exception):
    status_code: int = 500
    default_detail: str = "Call error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class CallInitiationError(CallError):
    status_code = 502
    default_detail = "The telephony provider rejected the outbound call."


class CallNotFoundError(CallError):
    status_code = 404
    default_detail = "Call not active."


class ConnectionTimeoutError(CallError):
    status_code = 504
    default_detail = "Timeout waiting for media connection."


class TurnConflictError(CallError):
    status_code = 409
    default_detail = "A turn is already in progress for this call."


class UnsupportedOperationError(CallError):
    status_code = 400
    default_detail = "Operation not supported by the active provider."


class ProviderRequestError(CallError):
    status_code = 502
    default_detail = "Telephony provider request failed."
