"""
Exception hierarchy for intake, delivery, and configuration failures.
"""

from __future__ import annotations

from typing import Optional


class ContactCongressError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(ContactCongressError):
    """Settings are missing or malformed."""


class RecipientNotFound(ContactCongressError, LookupError):
    """No recipient matches the given identifier or office code."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Unknown recipient: {key!r}")
        self.key = key


class MissingFields(ContactCongressError, ValueError):
    """A submission arrived without any field data."""


class DeliveryFailure(ContactCongressError):
    """A delivery path (CWC or web form) could not deliver the message."""


class CwcBadRequest(DeliveryFailure):
    """The CWC endpoint rejected the message.

    Attributes:
        status_code: HTTP status returned by the endpoint, if any.
        errors: Individual error strings parsed from the response body.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class FormFillError(DeliveryFailure):
    """The web form could not be filled out or rejected the submission."""
