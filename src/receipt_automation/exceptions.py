"""Exception types shared by the receipt pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Tuple

if TYPE_CHECKING:
    from .domain.models import FieldError


class ReceiptAutomationError(Exception):
    """Base exception for receipt automation errors"""


class ExtractionError(ReceiptAutomationError):
    """Raised when no JSON object can be recovered from model output"""


class EmptyOutputError(ExtractionError):
    """Raised when the model output is empty or whitespace only"""


class NumericFormatError(ReceiptAutomationError, ValueError):
    """Raised when a value cannot be coerced to a finite number"""


class SchemaViolation(ReceiptAutomationError):
    """Raised when extracted JSON does not match the receipt schema.

    Carries every violation found, never just the first one.
    """

    def __init__(self, errors: Tuple["FieldError", ...]) -> None:
        self.errors = tuple(errors)
        summary = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} schema violation(s): {summary}")


class CollaboratorError(ReceiptAutomationError):
    """Raised when the vision model or the store fails; message kept verbatim"""


class CredentialsExpiredError(CollaboratorError):
    """Raised when the model backend rejects expired or invalid credentials"""


class UploadRejected(ReceiptAutomationError):
    """Raised when an uploaded file is not an acceptable image"""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


_EXPIRED_MARKERS = (
    "session has expired",
    "expiredtoken",
    "expired token",
    "invalidclienttokenid",
    "security token included in the request is expired",
    "please reauthenticate",
)


def is_credentials_expired(message: str) -> bool:
    """Return True when a collaborator message looks like a credential expiry."""
    lower = (message or "").lower()
    return any(marker in lower for marker in _EXPIRED_MARKERS)
