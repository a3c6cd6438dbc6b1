"""
Authentication core for the Snovaa web client.

Design goals:
- One owned state container for "who is logged in" (SessionStore), kept live by provider pushes.
- OAuth redirect landing resolved exactly once per page load (CallbackResolver).
- Failures surface as values/messages; nothing here is fatal to the page.
"""

from snovaa.auth.callback import CallbackResolver
from snovaa.auth.errors import (
    AuthError,
    ExchangeFailed,
    NoAuthorizationUrl,
    NoProfile,
    ProviderUnavailable,
    SessionNotFound,
    ValidationError,
)
from snovaa.auth.models import (
    AuthResult,
    AuthState,
    CallbackOutcome,
    CallbackState,
    Principal,
    Profile,
    Redirected,
    Role,
    Session,
)
from snovaa.auth.store import SessionStore

__all__ = [
    "AuthError",
    "AuthResult",
    "AuthState",
    "CallbackOutcome",
    "CallbackResolver",
    "CallbackState",
    "ExchangeFailed",
    "NoAuthorizationUrl",
    "NoProfile",
    "Principal",
    "Profile",
    "ProviderUnavailable",
    "Redirected",
    "Role",
    "Session",
    "SessionNotFound",
    "SessionStore",
    "ValidationError",
]
