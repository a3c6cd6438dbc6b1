from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import requests
from pydantic import ValidationError as PydanticValidationError

from snovaa.auth.config import AuthConfig
from snovaa.auth.errors import ProviderUnavailable
from snovaa.auth.http import json_body, raise_for_status, send
from snovaa.auth.models import Profile

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


class RestProfileStore:
    """
    ProfileStore over the REST data API (`/rest/v1/profiles`).

    Row-level security decides what the caller may read, so requests carry the signed-in
    user's access token when there is one.
    """

    def __init__(
        self,
        cfg: AuthConfig,
        *,
        access_token: Optional[Callable[[], Optional[str]]] = None,
        http: Optional[requests.Session] = None,
    ) -> None:
        if not cfg.provider_enabled:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be configured")
        self._url = f"{cfg.supabase_url}/rest/v1/{PROFILES_TABLE}"
        self._anon_key = cfg.supabase_anon_key
        self._timeout = cfg.http_timeout_seconds
        self._access_token = access_token or (lambda: None)
        self._http = http or requests.Session()

    def _headers(self, **extra: str) -> Dict[str, str]:
        token = self._access_token() or self._anon_key
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        headers.update(extra)
        return headers

    async def fetch_profile(self, principal_id: str) -> Optional[Profile]:
        r = await asyncio.to_thread(
            send,
            self._http,
            "GET",
            self._url,
            headers=self._headers(),
            timeout=self._timeout,
            params={"select": "*", "user_id": f"eq.{principal_id}", "limit": "1"},
        )
        raise_for_status(r, rejected=ProviderUnavailable)
        rows = json_body(r)
        if not rows:
            return None
        if not isinstance(rows, list) or not isinstance(rows[0], dict):
            raise ProviderUnavailable("Invalid profile response")
        try:
            return Profile.model_validate(rows[0])
        except PydanticValidationError as e:
            raise ProviderUnavailable(f"Invalid profile record for {principal_id}") from e

    async def update_profile(self, profile_id: str, fields: Dict[str, Any]) -> None:
        r = await asyncio.to_thread(
            send,
            self._http,
            "PATCH",
            self._url,
            headers=self._headers(Prefer="return=minimal"),
            timeout=self._timeout,
            params={"id": f"eq.{profile_id}"},
            json_body=fields,
        )
        raise_for_status(r)
        logger.info(f"Profile {profile_id} updated ({', '.join(sorted(fields))})")
