from __future__ import annotations

import asyncio
import logging
from typing import Optional

from snovaa.auth.base import CredentialService, Navigator, ProfileStore
from snovaa.auth.callback import CallbackResolver
from snovaa.auth.config import AuthConfig, load_auth_config
from snovaa.auth.gotrue import GoTrueClient, SessionStorage
from snovaa.auth.models import CallbackState
from snovaa.auth.profiles import RestProfileStore
from snovaa.auth.store import SessionStore

logger = logging.getLogger(__name__)


def build_credential_service(cfg: AuthConfig, *, storage: Optional[SessionStorage] = None) -> GoTrueClient:
    return GoTrueClient(cfg, storage=storage)


def build_profile_store(cfg: AuthConfig, credentials: GoTrueClient) -> RestProfileStore:
    return RestProfileStore(cfg, access_token=credentials.current_access_token)


def build_session_store(
    cfg: AuthConfig,
    navigator: Navigator,
    *,
    credentials: Optional[CredentialService] = None,
    profiles: Optional[ProfileStore] = None,
) -> SessionStore:
    """
    Session store wired to the hosted provider unless collaborators are passed in.

    Profiles default to the REST store only when the credentials are the hosted client, since
    the REST store needs that client's access token.
    """
    if credentials is None:
        credentials = build_credential_service(cfg)
    if profiles is None:
        if not isinstance(credentials, GoTrueClient):
            raise ValueError("A profile store is required for custom credential services")
        profiles = build_profile_store(cfg, credentials)
    return SessionStore(credentials, profiles, navigator, cfg)


async def open_callback_page(
    url: str,
    navigator: Navigator,
    *,
    cfg: Optional[AuthConfig] = None,
    credentials: Optional[CredentialService] = None,
    profiles: Optional[ProfileStore] = None,
    store: Optional[SessionStore] = None,
) -> Optional[CallbackState]:
    """
    Run one load of the OAuth callback page.

    The store starts first (subscribe, then pull); an app-wide store that is already running
    can be passed in. The hosted client's URL detection runs concurrently with the resolver,
    which is what the fragment settle delay waits for.
    """
    cfg = cfg or load_auth_config()
    if credentials is None:
        credentials = build_credential_service(cfg)
    if store is None:
        store = build_session_store(cfg, navigator, credentials=credentials, profiles=profiles)
    resolver = CallbackResolver(store, credentials, navigator, cfg)

    await store.start()
    detect = None
    if isinstance(credentials, GoTrueClient):
        detect = asyncio.create_task(credentials.initialize(url))
    try:
        state = await resolver.resolve(url)
    finally:
        if detect is not None:
            await asyncio.gather(detect, return_exceptions=True)
    if state is not None:
        logger.info(f"Callback resolved: {state.outcome.value}")
    return state
