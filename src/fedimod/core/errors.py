"""Error taxonomy shared by the core and the adapters."""

from __future__ import annotations

from typing import Optional


class FedimodError(Exception):
    """Base class for all fedimod errors."""


class ConfigError(FedimodError):
    """Invalid rule, pattern, or credential found at load time."""

    def __init__(self, message: str, location: Optional[str] = None) -> None:
        self.location = location
        if location:
            message = f"{location}: {message}"
        super().__init__(message)


class Unauthorized(FedimodError):
    """Webhook signature did not verify against any configured secret."""


class DecodeError(FedimodError):
    """Payload could not be decoded into a normalized event."""


class CredentialError(FedimodError):
    """No currently-valid credential is available for a bot account."""


class ActionFailure(FedimodError):
    """The remote API rejected a report or restrict call."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AlreadyApplied(ActionFailure):
    """The requested restriction is already in effect on the account."""
