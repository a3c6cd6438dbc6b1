from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Set, Union

from snovaa.auth.base import CredentialService, Navigator, ProfileStore, Unsubscribe
from snovaa.auth.config import AuthConfig
from snovaa.auth.errors import NoAuthorizationUrl, NoProfile, ValidationError, as_auth_error
from snovaa.auth.models import AuthEvent, AuthResult, AuthState, Principal, Profile, Redirected, Role, Session

logger = logging.getLogger(__name__)

StateListener = Callable[[AuthState], None]


class SessionStore:
    """
    Single source of truth for "who is logged in" and "what is their profile".

    Writers (provider pushes, the pull on start, explicit operations) all go through
    `_apply_session`, so the last applied session wins and the principal always matches it.

    Profile loading is eventually consistent: every principal transition bumps a generation
    counter, and a profile fetch only lands if its generation is still current.
    """

    def __init__(
        self,
        credentials: CredentialService,
        profiles: ProfileStore,
        navigator: Navigator,
        cfg: AuthConfig,
    ) -> None:
        self._credentials = credentials
        self._profiles = profiles
        self._navigator = navigator
        self._cfg = cfg

        self._session: Optional[Session] = None
        self._principal: Optional[Principal] = None
        self._profile: Optional[Profile] = None
        self._loading = True

        self._generation = 0
        self._pushes = 0
        self._started = False
        self._closed = False
        self._unsubscribe: Optional[Unsubscribe] = None
        self._listeners: List[StateListener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._ready = asyncio.Event()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def principal(self) -> Optional[Principal]:
        return self._principal

    @property
    def profile(self) -> Optional[Profile]:
        return self._profile

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> AuthState:
        return AuthState(
            session=self._session,
            principal=self._principal,
            profile=self._profile,
            loading=self._loading,
        )

    # -- lifecycle -----------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Subscribe to provider pushes, then pull the persisted session once.

        Subscribing first guarantees no push is lost while the pull is in flight.
        """
        if self._started:
            return
        self._started = True
        self._unsubscribe = self._credentials.subscribe(self._on_auth_change)

        pushes_before = self._pushes
        try:
            session = await self._credentials.pull_session()
        except Exception as e:
            logger.warning(f"Initial session pull failed: {as_auth_error(e).message}")
            session = None

        if self._closed:
            return
        if self._pushes != pushes_before:
            # A push landed while pulling; it is newer than what we pulled.
            logger.debug("Discarding initial session pull superseded by a provider push")
            return
        self._apply_session(session, source=AuthEvent.INITIAL_SESSION.value)

    def stop(self) -> None:
        """
        Unsubscribe from the provider; results of fetches still in flight are discarded.

        Anyone still waiting in `ready()` is released and should check `closed`.
        """
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()
        self._ready.set()

    async def ready(self) -> None:
        """Wait until the first session resolution (push or pull) has been applied, or the store stops."""
        await self._ready.wait()

    async def drain(self) -> None:
        """Wait for every scheduled profile fetch, including ones scheduled while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def subscribe(self, listener: StateListener) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- state updates -------------------------------------------------------------------------

    def _on_auth_change(self, event: AuthEvent, session: Optional[Session]) -> None:
        if self._closed:
            return
        self._pushes += 1
        user_id = session.user.id if session is not None else None
        logger.info(f"Auth state change {event.value} (user={user_id})")
        self._apply_session(session, source=event.value)

    def _apply_session(self, session: Optional[Session], *, source: str) -> None:
        if not self._loading and session == self._session:
            return

        prev_id = self._principal.id if self._principal is not None else None
        self._session = session
        self._principal = session.user if session is not None else None
        new_id = self._principal.id if self._principal is not None else None

        if new_id != prev_id:
            self._generation += 1
            self._profile = None
            if new_id is not None:
                self._schedule_profile_fetch(new_id, self._generation)
            logger.debug(f"Principal {prev_id} -> {new_id} via {source} (generation={self._generation})")

        self._loading = False
        self._ready.set()
        self._notify()

    def _notify(self) -> None:
        if self._closed:
            return
        snapshot = self.state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Auth state listener failed")

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _schedule_profile_fetch(self, principal_id: str, generation: int) -> None:
        # Never fetch inline: we may be inside the provider's own subscriber dispatch.
        task = asyncio.get_running_loop().create_task(self._fetch_profile(principal_id, generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fetch_profile(self, principal_id: str, generation: int) -> None:
        await asyncio.sleep(self._cfg.profile_fetch_delay)
        if not self._is_current(generation):
            return
        try:
            profile = await self._profiles.fetch_profile(principal_id)
        except Exception as e:
            logger.warning(f"Profile fetch failed for {principal_id}: {as_auth_error(e).message}")
            return

        if not self._is_current(generation):
            logger.info(f"Discarding profile for superseded principal {principal_id}")
            return
        if profile is None:
            logger.info(f"No profile provisioned yet for {principal_id}")
            return
        self._profile = profile
        self._notify()

    # -- operations ----------------------------------------------------------------------------

    async def sign_up(self, email: str, password: str, display_name: str) -> AuthResult:
        if not (email or "").strip() or not password:
            return AuthResult(error=ValidationError("Email and password are required"))
        try:
            session = await self._credentials.password_sign_up(
                email.strip(),
                password,
                display_name=display_name,
                redirect_to=self._cfg.email_redirect_url,
            )
        except Exception as e:
            err = as_auth_error(e)
            logger.warning(f"Sign up failed: {err.message}")
            return AuthResult(error=err)

        if session is not None:
            self._apply_session(session, source="sign_up")
        else:
            logger.info("Sign up accepted; awaiting email confirmation")
        return AuthResult()

    async def sign_in(self, email: str, password: str) -> AuthResult:
        if not (email or "").strip() or not password:
            return AuthResult(error=ValidationError("Email and password are required"))
        try:
            session = await self._credentials.password_sign_in(email.strip(), password)
        except Exception as e:
            err = as_auth_error(e)
            logger.warning(f"Sign in failed: {err.message}")
            return AuthResult(error=err)
        self._apply_session(session, source="sign_in")
        return AuthResult()

    async def sign_in_with_external_provider(self) -> Union[Redirected, AuthResult]:
        """
        Start the redirect-based handshake.

        On success the navigator has been pointed at the provider and `Redirected` is returned;
        the page is leaving, so callers should not act on it beyond stopping.
        """
        provider = self._cfg.oauth_provider
        redirect_to = self._cfg.callback_url
        logger.info(f"Starting {provider} sign-in (callback={redirect_to})")
        try:
            url = await self._credentials.external_provider_authorization_url(provider, redirect_to=redirect_to)
        except Exception as e:
            err = as_auth_error(e)
            logger.error(f"{provider} sign-in rejected by provider: {err.message}")
            return AuthResult(error=err)

        if not url:
            logger.error(f"{provider} sign-in returned no authorization URL")
            return AuthResult(error=NoAuthorizationUrl("No OAuth URL returned"))

        self._navigator.assign(url)
        return Redirected(url=url)

    async def sign_out(self) -> AuthResult:
        """
        Clear the provider session and local state.

        Local state is cleared even when the provider call fails; the result is still ok.
        """
        try:
            await self._credentials.sign_out()
        except Exception as e:
            logger.warning(f"Provider sign out failed; clearing local session anyway: {as_auth_error(e).message}")
        self._apply_session(None, source="sign_out")
        return AuthResult()

    async def update_role(self, role: Union[Role, str]) -> AuthResult:
        profile = self._profile
        if profile is None:
            return AuthResult(error=NoProfile())
        try:
            new_role = Role(role)
        except ValueError:
            return AuthResult(error=ValidationError(f"Unknown role: {role}"))

        generation = self._generation
        try:
            await self._profiles.update_profile(profile.id, {"role": new_role.value})
        except Exception as e:
            err = as_auth_error(e)
            logger.warning(f"Role update failed for profile {profile.id}: {err.message}")
            return AuthResult(error=err)

        current = self._profile
        if self._is_current(generation) and current is not None and current.id == profile.id:
            self._profile = current.model_copy(update={"role": new_role})
            self._notify()
        return AuthResult()
