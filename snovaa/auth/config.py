from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from snovaa.auth.util import sanitize_next_path


@dataclass(frozen=True)
class AuthConfig:
    # Credential service / profile store (hosted auth + REST data API)
    supabase_url: Optional[str]
    supabase_anon_key: Optional[str]

    # Browser-facing addresses
    public_base_url: str  # App origin, e.g. https://snovaa.app
    callback_path: str  # OAuth redirect target
    dashboard_path: str  # Where a resolved sign-in lands
    login_path: str  # Sign-in entry point
    oauth_provider: str

    # Fixed waits (seconds). These are settle delays, not retry backoffs.
    profile_fetch_delay: float
    exchange_settle_delay: float
    hash_settle_delay: float
    missing_session_redirect_delay: float

    http_timeout_seconds: float

    @property
    def provider_enabled(self) -> bool:
        """The hosted provider is usable only when both the URL and the anon key are configured."""
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def callback_url(self) -> str:
        return f"{self.public_base_url}{self.callback_path}"

    @property
    def email_redirect_url(self) -> str:
        return self.public_base_url


def _parse_seconds(name: str, default: float) -> float:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(0.0, value)


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    The provider is enabled if SUPABASE_URL and SUPABASE_ANON_KEY are set.
    Paths are sanitized to relative paths so navigation can never leave the app.
    """
    base_url = (os.getenv("AUTH_PUBLIC_BASE_URL", "") or "").strip() or "http://localhost:8080"
    supabase_url = (os.getenv("SUPABASE_URL", "") or "").strip().rstrip("/") or None

    return AuthConfig(
        supabase_url=supabase_url,
        supabase_anon_key=(os.getenv("SUPABASE_ANON_KEY", "") or "").strip() or None,
        public_base_url=base_url.rstrip("/"),
        callback_path=sanitize_next_path(os.getenv("AUTH_CALLBACK_PATH"), "/auth/callback"),
        dashboard_path=sanitize_next_path(os.getenv("AUTH_DASHBOARD_PATH"), "/dashboard"),
        login_path=sanitize_next_path(os.getenv("AUTH_LOGIN_PATH"), "/login"),
        oauth_provider=(os.getenv("AUTH_OAUTH_PROVIDER", "") or "").strip().lower() or "google",
        profile_fetch_delay=_parse_seconds("AUTH_PROFILE_FETCH_DELAY_SECONDS", 0.1),
        exchange_settle_delay=_parse_seconds("AUTH_EXCHANGE_SETTLE_SECONDS", 0.5),
        hash_settle_delay=_parse_seconds("AUTH_HASH_SETTLE_SECONDS", 1.0),
        missing_session_redirect_delay=_parse_seconds("AUTH_MISSING_SESSION_REDIRECT_SECONDS", 3.0),
        http_timeout_seconds=_parse_seconds("AUTH_HTTP_TIMEOUT_SECONDS", 10.0) or 10.0,
    )
