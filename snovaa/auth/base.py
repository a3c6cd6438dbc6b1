"""
Collaborator interfaces consumed by the auth core.

The credential service, profile store, and navigation are owned elsewhere; the core only
depends on these Protocols so tests and alternative providers can be swapped in.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from snovaa.auth.models import AuthEvent, Profile, Session

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]
AuthChangeCallback = Callable[[AuthEvent, Optional[Session]], None]


class CredentialService(Protocol):
    """Identity-provider client (opaque capability)."""

    async def pull_session(self) -> Optional[Session]:
        """Return the currently persisted session, if any."""

    def subscribe(self, callback: AuthChangeCallback) -> Unsubscribe:
        """
        Register for provider push notifications.

        The callback is invoked synchronously from the provider's dispatch loop.
        """

    async def password_sign_up(
        self, email: str, password: str, *, display_name: str, redirect_to: Optional[str] = None
    ) -> Optional[Session]:
        """Register a principal. Returns a session only when the provider auto-confirms."""

    async def password_sign_in(self, email: str, password: str) -> Session:
        ...

    async def external_provider_authorization_url(self, provider: str, *, redirect_to: str) -> Optional[str]:
        """Return the provider-issued authorization URL bound to `redirect_to`."""

    async def exchange_code_for_session(self, code: str) -> Session:
        ...

    async def sign_out(self) -> None:
        ...


class ProfileStore(Protocol):
    async def fetch_profile(self, principal_id: str) -> Optional[Profile]:
        """Return the profile keyed by `principal_id`, or None when not provisioned."""

    async def update_profile(self, profile_id: str, fields: Dict[str, Any]) -> None:
        ...


class Navigator(Protocol):
    def navigate_to(self, path: str) -> None:
        """In-app navigation. Fire-and-forget."""

    def assign(self, url: str) -> None:
        """Leave the app for an external URL."""


class HistoryNavigator:
    """
    In-process Navigator that records where the page was sent.

    The hosting page reads `history` (or `location`) to perform the actual browser navigation.
    """

    def __init__(self) -> None:
        self.history: List[str] = []

    @property
    def location(self) -> Optional[str]:
        return self.history[-1] if self.history else None

    def navigate_to(self, path: str) -> None:
        logger.info(f"Navigating to {path}")
        self.history.append(path)

    def assign(self, url: str) -> None:
        # Strip the query: authorization URLs carry the PKCE challenge.
        logger.info(f"Redirecting to external provider {url.split('?', 1)[0]}")
        self.history.append(url)
