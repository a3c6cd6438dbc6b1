"""
Credential service client for the hosted auth REST API (`/auth/v1`).

Blocking `requests` calls run in a worker thread so the page's event loop keeps dispatching.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import urlencode

import jwt  # PyJWT
import requests
from pydantic import ValidationError as PydanticValidationError

from snovaa.auth.base import AuthChangeCallback, Unsubscribe
from snovaa.auth.config import AuthConfig
from snovaa.auth.errors import AuthError, ExchangeFailed, ProviderUnavailable, ValidationError
from snovaa.auth.http import json_body, raise_for_status, send
from snovaa.auth.models import AuthEvent, Session
from snovaa.auth.util import parse_landing_url, pkce_challenge, random_token

logger = logging.getLogger(__name__)

SESSION_KEY = "snovaa-auth-token"
CODE_VERIFIER_KEY = f"{SESSION_KEY}-code-verifier"


class SessionStorage(Protocol):
    """Where the client persists the session between page loads (localStorage-like)."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryStorage:
    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class GoTrueClient:
    """
    CredentialService implementation.

    Notes:
    - The OAuth flow is PKCE: the verifier is persisted when the authorization URL is built and
      consumed by the code exchange.
    - Every session change is persisted first, then pushed to subscribers.
    """

    def __init__(
        self,
        cfg: AuthConfig,
        *,
        storage: Optional[SessionStorage] = None,
        http: Optional[requests.Session] = None,
    ) -> None:
        if not cfg.provider_enabled:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be configured")
        self._base_url = f"{cfg.supabase_url}/auth/v1"
        self._anon_key = cfg.supabase_anon_key
        self._timeout = cfg.http_timeout_seconds
        self._storage: SessionStorage = storage or MemoryStorage()
        self._http = http or requests.Session()
        self._listeners: List[AuthChangeCallback] = []

    # -- subscriptions -------------------------------------------------------------------------

    def subscribe(self, callback: AuthChangeCallback) -> Unsubscribe:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, session)
            except Exception:
                logger.exception(f"Auth listener failed on {event.value}")

    # -- persistence ---------------------------------------------------------------------------

    def _load_session(self) -> Optional[Session]:
        raw = self._storage.get_item(SESSION_KEY)
        if not raw:
            return None
        try:
            return Session.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Discarding unreadable persisted session")
            self._storage.remove_item(SESSION_KEY)
            return None

    def _set_session(self, session: Session, event: AuthEvent) -> Session:
        self._storage.set_item(SESSION_KEY, session.model_dump_json())
        self._emit(event, session)
        return session

    def current_access_token(self) -> Optional[str]:
        session = self._load_session()
        return session.access_token if session is not None else None

    # -- HTTP ----------------------------------------------------------------------------------

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
            "Content-Type": "application/json",
        }

    async def _post(
        self,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
        rejected: type = ValidationError,
    ) -> Dict[str, Any]:
        r = await asyncio.to_thread(
            send,
            self._http,
            "POST",
            f"{self._base_url}{path}",
            headers=self._headers(access_token),
            timeout=self._timeout,
            params=params,
            json_body=body,
        )
        raise_for_status(r, rejected=rejected)
        data = json_body(r)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ProviderUnavailable("Invalid response from auth service")
        return data

    def _session_from(self, data: Dict[str, Any], *, rejected: type = ProviderUnavailable) -> Session:
        try:
            return Session.from_token_response(data)
        except (PydanticValidationError, TypeError, ValueError) as e:
            raise rejected("Invalid session in auth service response") from e

    # -- CredentialService ---------------------------------------------------------------------

    async def pull_session(self) -> Optional[Session]:
        session = self._load_session()
        if session is None or not session.is_expired():
            return session
        if not session.refresh_token:
            logger.info("Persisted session expired without a refresh token")
            self._storage.remove_item(SESSION_KEY)
            return None
        try:
            return await self._refresh(session.refresh_token)
        except ValidationError as e:
            logger.info(f"Refresh token rejected: {e.message}")
            self._storage.remove_item(SESSION_KEY)
            self._emit(AuthEvent.SIGNED_OUT, None)
            return None

    async def _refresh(self, refresh_token: str) -> Session:
        data = await self._post("/token", params={"grant_type": "refresh_token"}, body={"refresh_token": refresh_token})
        return self._set_session(self._session_from(data), AuthEvent.TOKEN_REFRESHED)

    async def password_sign_up(
        self, email: str, password: str, *, display_name: str, redirect_to: Optional[str] = None
    ) -> Optional[Session]:
        data = await self._post(
            "/signup",
            params={"redirect_to": redirect_to} if redirect_to else None,
            body={"email": email, "password": password, "data": {"display_name": display_name}},
        )
        if not data.get("access_token"):
            # Confirmation email sent; no session until the link is followed.
            return None
        return self._set_session(self._session_from(data), AuthEvent.SIGNED_IN)

    async def password_sign_in(self, email: str, password: str) -> Session:
        data = await self._post("/token", params={"grant_type": "password"}, body={"email": email, "password": password})
        return self._set_session(self._session_from(data), AuthEvent.SIGNED_IN)

    async def external_provider_authorization_url(self, provider: str, *, redirect_to: str) -> Optional[str]:
        if not provider:
            raise ValidationError("OAuth provider not configured")
        verifier = random_token(32)
        self._storage.set_item(CODE_VERIFIER_KEY, verifier)
        params = {
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": pkce_challenge(verifier),
            "code_challenge_method": "s256",
        }
        return f"{self._base_url}/authorize?{urlencode(params)}"

    async def exchange_code_for_session(self, code: str) -> Session:
        verifier = self._storage.get_item(CODE_VERIFIER_KEY)
        if not verifier:
            raise ExchangeFailed("Code verifier not found; please sign in again")
        try:
            data = await self._post(
                "/token",
                params={"grant_type": "pkce"},
                body={"auth_code": code, "code_verifier": verifier},
                rejected=ExchangeFailed,
            )
        finally:
            # Codes are single-use; a retry with the same verifier cannot succeed.
            self._storage.remove_item(CODE_VERIFIER_KEY)
        return self._set_session(self._session_from(data, rejected=ExchangeFailed), AuthEvent.SIGNED_IN)

    async def sign_out(self) -> None:
        session = self._load_session()
        self._storage.remove_item(SESSION_KEY)
        self._emit(AuthEvent.SIGNED_OUT, None)
        if session is None:
            return
        r = await asyncio.to_thread(
            send,
            self._http,
            "POST",
            f"{self._base_url}/logout",
            headers=self._headers(session.access_token),
            timeout=self._timeout,
        )
        # Already-invalid tokens are as good as signed out.
        if r.status_code in (401, 403, 404):
            return
        raise_for_status(r, rejected=ProviderUnavailable)

    # -- detect session in URL -----------------------------------------------------------------

    async def initialize(self, url: str) -> Optional[Session]:
        """
        Pick up tokens delivered in the URL fragment (implicit/hash flow).

        The access token's claims are read without signature verification: they only seed the
        local principal, and every API call is still authorized server-side by the token itself.
        """
        params = parse_landing_url(url)
        fragment = params.fragment
        if "error" in fragment:
            logger.warning(f"Auth redirect fragment carried error: {fragment.get('error')}")
            return None
        if not params.has_token_fragment:
            return None

        access_token = fragment["access_token"]
        try:
            claims = jwt.decode(access_token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            logger.warning(f"Ignoring unreadable access token in URL fragment ({type(e).__name__})")
            return None
        subject = str(claims.get("sub") or "")
        if not subject:
            logger.warning("Ignoring access token without subject in URL fragment")
            return None

        payload: Dict[str, Any] = {
            "access_token": access_token,
            "token_type": fragment.get("token_type") or "bearer",
            "expires_in": _int_or_none(fragment.get("expires_in")),
            "expires_at": _int_or_none(fragment.get("expires_at")) or _int_or_none(claims.get("exp")),
            "refresh_token": fragment.get("refresh_token") or None,
            "user": {
                "id": subject,
                "email": claims.get("email"),
                "user_metadata": claims.get("user_metadata") or {},
            },
        }
        try:
            session = self._session_from(payload)
        except AuthError as e:
            logger.warning(f"Ignoring URL fragment session: {e.message}")
            return None
        logger.info(f"Session recovered from URL fragment for {subject}")
        return self._set_session(session, AuthEvent.SIGNED_IN)


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
