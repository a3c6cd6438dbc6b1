from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from snovaa.auth.base import CredentialService, Navigator
from snovaa.auth.config import AuthConfig
from snovaa.auth.errors import SessionNotFound, as_auth_error
from snovaa.auth.models import CallbackOutcome, CallbackState, Session
from snovaa.auth.store import SessionStore
from snovaa.auth.util import parse_landing_url

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class CallbackResolver:
    """
    One-shot state machine for the OAuth redirect landing page.

    Classifies the landing URL, performs at most one exchange, then either navigates onward or
    leaves a terminal error in `state` for the page to display. Provider errors never auto-navigate:
    a misconfigured provider would otherwise bounce the user between sign-in and callback forever.

    Safe to invoke twice per page load (double-mounting hosts); only the first call does work.
    """

    def __init__(
        self,
        store: SessionStore,
        credentials: CredentialService,
        navigator: Navigator,
        cfg: AuthConfig,
        *,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._navigator = navigator
        self._cfg = cfg
        self._sleep: Sleep = sleep or asyncio.sleep
        self._started = False
        self._closed = False
        self._close_requested = asyncio.Event()
        self.state: Optional[CallbackState] = None

    def close(self) -> None:
        """The page is going away; anything still pending must not navigate."""
        self._closed = True
        self._close_requested.set()

    async def resolve(self, url: str) -> Optional[CallbackState]:
        # Set before the first await so a concurrent second call sees it.
        if self._started:
            logger.debug("Callback already being handled for this page load")
            return None
        self._started = True

        await self._wait_until_ready()
        if self._closed or self._store.closed:
            return None

        if self._store.principal is not None:
            logger.info("Callback reached with an existing session")
            return self._finish(CallbackOutcome.ALREADY_AUTHENTICATED, navigate=self._cfg.dashboard_path)

        params = parse_landing_url(url)
        if params.error:
            message = params.error_description or params.error
            logger.error(f"Provider returned error on callback: {params.error} ({message})")
            return self._finish(CallbackOutcome.PROVIDER_ERROR, message=message)

        if params.code:
            return await self._exchange(params.code)

        if params.has_token_fragment:
            return await self._resolve_token_fragment()

        logger.info("Callback reached without credentials; sending to sign-in")
        return self._finish(CallbackOutcome.NO_CREDENTIAL_PRESENT, navigate=self._cfg.login_path)

    async def _wait_until_ready(self) -> None:
        """Wait for the store's first resolution, giving up early if the page closes."""
        waiters = {
            asyncio.ensure_future(self._store.ready()),
            asyncio.ensure_future(self._close_requested.wait()),
        }
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def _exchange(self, code: str) -> Optional[CallbackState]:
        try:
            await self._credentials.exchange_code_for_session(code)
        except Exception as e:
            err = as_auth_error(e)
            logger.warning(f"Code exchange failed: {err.message}; re-checking session")
            # The same code may already have been consumed by a concurrent handler.
            session = await self._pull_session()
            if self._closed:
                return None
            if session is None:
                logger.error(f"Code exchange failed and no session exists: {err.message}")
                return self._finish(CallbackOutcome.PROVIDER_ERROR, message=err.message)
            logger.info("Session already established; continuing despite failed exchange")
        else:
            logger.info("Authorization code exchanged")

        await self._sleep(self._cfg.exchange_settle_delay)
        if self._closed:
            return None
        return self._finish(CallbackOutcome.CODE_EXCHANGED, navigate=self._cfg.dashboard_path)

    async def _resolve_token_fragment(self) -> Optional[CallbackState]:
        await self._sleep(self._cfg.hash_settle_delay)
        if self._closed:
            return None
        session = await self._pull_session()
        if self._closed:
            return None
        if session is not None:
            logger.info("Session resolved from URL fragment")
            return self._finish(CallbackOutcome.HASH_TOKEN_RESOLVED, navigate=self._cfg.dashboard_path)

        err = SessionNotFound()
        logger.warning("URL fragment carried tokens but no session settled")
        # Visible while we wait to send the user back to sign-in.
        self.state = CallbackState(outcome=CallbackOutcome.HASH_TOKEN_MISSING, message=err.message)
        await self._sleep(self._cfg.missing_session_redirect_delay)
        if self._closed:
            return None
        return self._finish(CallbackOutcome.HASH_TOKEN_MISSING, message=err.message, navigate=self._cfg.login_path)

    async def _pull_session(self) -> Optional[Session]:
        try:
            return await self._credentials.pull_session()
        except Exception as e:
            logger.warning(f"Session pull failed: {as_auth_error(e).message}")
            return None

    def _finish(
        self,
        outcome: CallbackOutcome,
        *,
        message: Optional[str] = None,
        navigate: Optional[str] = None,
    ) -> CallbackState:
        if navigate is not None:
            self._navigator.navigate_to(navigate)
        self.state = CallbackState(outcome=outcome, message=message, navigated_to=navigate)
        return self.state
