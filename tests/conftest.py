"""
Pytest config.

Local imports like `import snovaa` rely on the repo root being on sys.path; pin it here so a
global `pytest` entrypoint collects reliably without an editable install.

Also provides in-memory fakes for the auth core's collaborators.
"""

from __future__ import annotations

import asyncio
import sys
from collections import Counter, defaultdict
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from snovaa.auth.base import HistoryNavigator  # noqa: E402
from snovaa.auth.config import AuthConfig  # noqa: E402
from snovaa.auth.models import AuthEvent, Principal, Profile, Role, Session  # noqa: E402

BASE_CONFIG = AuthConfig(
    supabase_url="https://project.example.test",
    supabase_anon_key="anon-key",
    public_base_url="https://snovaa.example.test",
    callback_path="/auth/callback",
    dashboard_path="/dashboard",
    login_path="/login",
    oauth_provider="google",
    profile_fetch_delay=0.0,
    exchange_settle_delay=0.5,
    hash_settle_delay=1.0,
    missing_session_redirect_delay=3.0,
    http_timeout_seconds=10.0,
)


def make_config(**overrides: Any) -> AuthConfig:
    return replace(BASE_CONFIG, **overrides)


def make_session(user_id: str = "user-1", *, email: Optional[str] = None, token: Optional[str] = None) -> Session:
    return Session(
        access_token=token or f"access-{user_id}",
        refresh_token=f"refresh-{user_id}",
        expires_in=3600,
        user=Principal(id=user_id, email=email or f"{user_id}@example.test"),
    )


def make_profile(user_id: str = "user-1", *, role: Role = Role.PARTICIPANT) -> Profile:
    return Profile(
        id=f"profile-{user_id}",
        user_id=user_id,
        display_name=f"Name {user_id}",
        email=f"{user_id}@example.test",
        role=role,
        created_at="2025-01-01T00:00:00+00:00",
    )


class FakeCredentials:
    """CredentialService double that counts calls and pushes like the real provider."""

    def __init__(self, persisted: Optional[Session] = None) -> None:
        self.persisted = persisted
        self.listeners: List[Callable[[AuthEvent, Optional[Session]], None]] = []
        self.calls: Counter = Counter()
        self.order: List[str] = []

        self.pull_gate: Optional[asyncio.Event] = None
        self.exchange_session: Optional[Session] = make_session()
        self.exchange_error: Optional[Exception] = None
        self.exchange_hook: Optional[Callable[[], None]] = None
        self.sign_in_session: Optional[Session] = make_session()
        self.sign_in_error: Optional[Exception] = None
        self.sign_up_session: Optional[Session] = None
        self.sign_up_error: Optional[Exception] = None
        self.sign_up_args: Optional[Tuple[Any, ...]] = None
        self.authorization_url: Optional[str] = "https://project.example.test/auth/v1/authorize?provider=google"
        self.authorization_error: Optional[Exception] = None
        self.authorization_args: Optional[Tuple[str, str]] = None
        self.sign_out_error: Optional[Exception] = None

    def push(self, event: AuthEvent, session: Optional[Session]) -> None:
        self.persisted = session
        for callback in list(self.listeners):
            callback(event, session)

    def subscribe(self, callback):  # type: ignore[no-untyped-def]
        self.order.append("subscribe")
        self.listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self.listeners:
                self.listeners.remove(callback)

        return _unsubscribe

    async def pull_session(self) -> Optional[Session]:
        self.order.append("pull")
        self.calls["pull_session"] += 1
        if self.pull_gate is not None:
            snapshot = self.persisted
            await self.pull_gate.wait()
            return snapshot
        return self.persisted

    async def password_sign_up(self, email, password, *, display_name, redirect_to=None):  # type: ignore[no-untyped-def]
        self.calls["password_sign_up"] += 1
        self.sign_up_args = (email, password, display_name, redirect_to)
        if self.sign_up_error is not None:
            raise self.sign_up_error
        if self.sign_up_session is not None:
            self.push(AuthEvent.SIGNED_IN, self.sign_up_session)
        return self.sign_up_session

    async def password_sign_in(self, email: str, password: str) -> Session:
        self.calls["password_sign_in"] += 1
        if self.sign_in_error is not None:
            raise self.sign_in_error
        assert self.sign_in_session is not None
        self.push(AuthEvent.SIGNED_IN, self.sign_in_session)
        return self.sign_in_session

    async def external_provider_authorization_url(self, provider: str, *, redirect_to: str) -> Optional[str]:
        self.calls["external_provider_authorization_url"] += 1
        self.authorization_args = (provider, redirect_to)
        if self.authorization_error is not None:
            raise self.authorization_error
        return self.authorization_url

    async def exchange_code_for_session(self, code: str) -> Session:
        self.calls["exchange_code_for_session"] += 1
        if self.exchange_hook is not None:
            self.exchange_hook()
        if self.exchange_error is not None:
            raise self.exchange_error
        assert self.exchange_session is not None
        self.push(AuthEvent.SIGNED_IN, self.exchange_session)
        return self.exchange_session

    async def sign_out(self) -> None:
        self.calls["sign_out"] += 1
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.push(AuthEvent.SIGNED_OUT, None)


class FakeProfiles:
    """ProfileStore double; fetches for ids in `gates` block until the gate is set."""

    def __init__(self, profiles: Optional[Dict[str, Profile]] = None) -> None:
        self.profiles: Dict[str, Profile] = dict(profiles or {})
        self.gates: Dict[str, asyncio.Event] = {}
        self.started: Dict[str, asyncio.Event] = defaultdict(asyncio.Event)
        self.fetch_calls: List[str] = []
        self.update_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.fetch_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None

    async def fetch_profile(self, principal_id: str) -> Optional[Profile]:
        self.fetch_calls.append(principal_id)
        self.started[principal_id].set()
        gate = self.gates.get(principal_id)
        if gate is not None:
            await gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.profiles.get(principal_id)

    async def update_profile(self, profile_id: str, fields: Dict[str, Any]) -> None:
        self.update_calls.append((profile_id, dict(fields)))
        if self.update_error is not None:
            raise self.update_error


@pytest.fixture
def cfg() -> AuthConfig:
    return make_config()


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def profiles() -> FakeProfiles:
    return FakeProfiles({"user-1": make_profile("user-1"), "user-2": make_profile("user-2")})


@pytest.fixture
def navigator() -> HistoryNavigator:
    return HistoryNavigator()
