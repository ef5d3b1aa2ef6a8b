"""Custom exceptions for the commlink integrations."""

from typing import Optional


class CommlinkError(Exception):
    """Base exception for commlink errors."""


class ConfigurationError(CommlinkError):
    """Raised when required credentials or settings are missing."""


class AuthenticationError(CommlinkError):
    """Raised when the token exchange fails."""


class NotFoundError(CommlinkError):
    """Raised when no remote event matches an iCalUId."""


class TransportError(CommlinkError):
    """Raised on network or connection failures."""


class AttachmentError(CommlinkError):
    """Raised when an attachment file cannot be read."""


class RemoteError(CommlinkError):
    """Raised when a remote service reports a failure status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
