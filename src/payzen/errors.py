"""Domain error hierarchy.

Services raise these; the global handlers in ``payzen.middleware.error_handler``
render them as the standard ``{"success": false, "error": ...}`` envelope.
"""

from __future__ import annotations

from typing import Any


class PayZenError(Exception):
    """Base error for all PayZen operations.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP status code.
        code: Machine-readable error code string.
        hint: Optional follow-up text rendered as the envelope `message`.
    """

    status_code: int = 500
    code: str = "payzen-error"

    def __init__(
        self,
        message: str,
        *,
        details: list[dict[str, Any]] | None = None,
        data: dict[str, Any] | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.data = data
        self.hint = hint


# -- 4xx -------------------------------------------------------------------


class ValidationError(PayZenError):
    status_code = 400
    code = "validation-error"


class InvalidAddress(ValidationError):
    code = "invalid-address"

    def __init__(self, message: str = "Invalid wallet address") -> None:
        super().__init__(message)


class Unauthorized(PayZenError):
    status_code = 401
    code = "unauthorized"


class Forbidden(PayZenError):
    status_code = 403
    code = "forbidden"


class NotFound(PayZenError):
    status_code = 404
    code = "not-found"


class Conflict(PayZenError):
    status_code = 409
    code = "conflict"


class AddressAlreadyRegistered(Conflict):
    code = "address-already-registered"

    def __init__(self) -> None:
        super().__init__("Wallet address already registered")


class UsernameTaken(Conflict):
    code = "username-taken"

    def __init__(self) -> None:
        super().__init__("Username already taken")


class TransactionFinalized(Conflict):
    code = "transaction-finalized"

    def __init__(self, status: str) -> None:
        super().__init__(f"Transaction is already {status}")
        self.status = status


class InvalidProof(PayZenError):
    """The supplied on-chain reference does not verify. The record stays pending."""

    status_code = 400
    code = "invalid-proof"

    def __init__(self, message: str = "Invalid or failed transaction hash") -> None:
        super().__init__(message)


# -- 5xx -------------------------------------------------------------------


class UpstreamUnavailable(PayZenError):
    """Chain RPC unreachable on a path whose write depends on it. Retryable."""

    status_code = 503
    code = "upstream-unavailable"
    retry_after_seconds = 5

    def __init__(self, message: str = "Blockchain network unavailable, please retry") -> None:
        super().__init__(message)


class ConfigurationError(PayZenError):
    status_code = 500
    code = "configuration-error"


class LinkCodeExhausted(PayZenError):
    """No unused link code could be drawn after repeated attempts."""

    status_code = 500
    code = "link-code-exhausted"

    def __init__(self, message: str = "Could not allocate a unique link code") -> None:
        super().__init__(message)
