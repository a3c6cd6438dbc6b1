from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from snovaa.auth.errors import AuthError


class Principal(BaseModel):
    """Authenticated identity derived from a Session."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """
    Provider-issued credential bundle.

    Sole authority for "is the user authenticated". Never mutated; a refresh produces a new Session.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None  # unix seconds
    refresh_token: Optional[str] = None
    user: Principal

    @classmethod
    def from_token_response(cls, payload: Dict[str, Any], *, now: Optional[float] = None) -> "Session":
        """
        Build a Session from a token endpoint response.

        Providers send `expires_in` and only sometimes `expires_at`; derive the latter when missing.
        """
        data = dict(payload or {})
        if data.get("expires_at") is None and data.get("expires_in") is not None:
            try:
                lifetime = int(data["expires_in"])
            except (TypeError, ValueError):
                # Left as-is so validation below rejects it.
                lifetime = None
            if lifetime is not None:
                issued = time.time() if now is None else now
                data["expires_at"] = int(issued) + lifetime
        return cls.model_validate(data)

    def is_expired(self, *, now: Optional[float] = None, leeway: int = 10) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current + leeway >= self.expires_at


class Role(str, Enum):
    PARTICIPANT = "participant"
    ORGANIZER = "organizer"
    SPONSOR = "sponsor"


class Profile(BaseModel):
    """Application-level record keyed by the principal id (`user_id`)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    user_id: str
    display_name: str
    email: Optional[str] = None
    role: Role = Role.PARTICIPANT
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True)
class AuthState:
    """Snapshot handed to SessionStore observers."""

    session: Optional[Session]
    principal: Optional[Principal]
    profile: Optional[Profile]
    loading: bool


@dataclass(frozen=True)
class AuthResult:
    error: Optional[AuthError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Redirected:
    """
    Control has left the page for `url`.

    Returned by redirect-and-never-return operations; there is no meaningful value to use afterwards.
    """

    url: str


class CallbackOutcome(str, Enum):
    ALREADY_AUTHENTICATED = "AlreadyAuthenticated"
    CODE_EXCHANGED = "CodeExchanged"
    PROVIDER_ERROR = "ProviderError"
    HASH_TOKEN_RESOLVED = "HashTokenResolved"
    HASH_TOKEN_MISSING = "HashTokenMissing"
    NO_CREDENTIAL_PRESENT = "NoCredentialPresent"


@dataclass(frozen=True)
class CallbackState:
    """Terminal classification of one callback page visit."""

    outcome: CallbackOutcome
    message: Optional[str] = None
    navigated_to: Optional[str] = None
