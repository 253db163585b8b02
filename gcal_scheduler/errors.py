"""
Error taxonomy for the scheduler service.

Every error here is a CalendarServiceError, which is what the HTTP routes
catch and collapse into a 500 response.
"""

from __future__ import annotations

from typing import Optional


class CalendarServiceError(Exception):
    """Base class for all failures surfaced to HTTP callers."""


class ConfigurationError(CalendarServiceError):
    """The process is missing configuration needed for an operation."""


class AuthExchangeError(CalendarServiceError):
    """The provider rejected an authorization code or a stored refresh token."""


class IdentityResolutionError(CalendarServiceError):
    """The provider could not confirm which account was authorized."""


class TokenNotFound(CalendarServiceError):
    """No credential record exists for the requested account identifier."""

    def __init__(self, account_identifier: str):
        super().__init__(f"No stored credential for {account_identifier!r}")
        self.account_identifier = account_identifier


class UserNotRegistered(CalendarServiceError):
    """A request named an account that never completed the OAuth flow."""

    def __init__(self, account_identifier: str):
        super().__init__(f"User not found: {account_identifier!r}")
        self.account_identifier = account_identifier


class InvalidDateError(CalendarServiceError):
    """A start/end/date value could not be parsed."""

    def __init__(self, value: object, reason: str = "Invalid date"):
        super().__init__(f"{reason}: {value!r}")
        self.value = value


class UpstreamError(CalendarServiceError):
    """The calendar API returned a non-success response."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(f"Calendar API error ({status}): {message}")
        self.status = status
        self.message = message


class CredentialStoreError(CalendarServiceError):
    """The credential store backend could not be read or written."""
