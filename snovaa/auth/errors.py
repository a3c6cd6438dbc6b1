from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """
    Base class for authentication failures.

    `message` is safe to show to the user; `code` is the provider's raw error code, if any.
    """

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationError(AuthError):
    """Malformed sign-up/sign-in input, as judged by the provider."""


class ProviderUnavailable(AuthError):
    """Network or service failure talking to the provider."""


class ExchangeFailed(AuthError):
    """Authorization code exchange rejected."""


class NoAuthorizationUrl(AuthError):
    """External-provider sign-in returned nothing to redirect to."""


class NoProfile(AuthError):
    """Profile-dependent operation attempted before a profile was loaded."""

    def __init__(self, message: str = "No profile found", *, code: Optional[str] = None) -> None:
        super().__init__(message, code=code)


class SessionNotFound(AuthError):
    """Hash-fragment sign-in settled without a session."""

    def __init__(
        self, message: str = "Session not found. Please try signing in again.", *, code: Optional[str] = None
    ) -> None:
        super().__init__(message, code=code)


def as_auth_error(e: Exception) -> AuthError:
    """Map any failure from a collaborator onto the taxonomy; unknown ones read as the provider being unavailable."""
    if isinstance(e, AuthError):
        return e
    return ProviderUnavailable(str(e) or type(e).__name__)
