from __future__ import annotations

import base64
import hashlib
import os
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qs, urlsplit

TOKEN_FRAGMENT_MARKER = "access_token"


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def pkce_challenge(verifier: str) -> str:
    """
    Generate PKCE challenge from verifier using SHA256.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def sanitize_next_path(next_path: str | None, default: str = "/") -> str:
    """
    Prevent open-redirects: allow only relative paths like `/dashboard`.
    """
    p = (next_path or "").strip()
    if not p:
        return default
    if not p.startswith("/"):
        return default
    # Disallow scheme-relative: `//evil.com`
    if p.startswith("//"):
        return default
    p = p.replace("\r", "").replace("\n", "")
    return p or default


def _first_values(raw: str) -> Dict[str, str]:
    parsed = parse_qs(raw or "", keep_blank_values=True)
    return {k: v[0] for k, v in parsed.items() if v}


@dataclass(frozen=True)
class LandingParams:
    """What the OAuth redirect carried back to the callback page."""

    code: Optional[str]
    error: Optional[str]
    error_description: Optional[str]
    fragment: Dict[str, str]

    @property
    def has_token_fragment(self) -> bool:
        return TOKEN_FRAGMENT_MARKER in self.fragment


def parse_landing_url(url: str) -> LandingParams:
    """
    Split a landing URL into the query parameters and fragment parameters the callback cares about.

    Empty values count as absent (`?code=` is not a code).
    """
    parts = urlsplit(url or "")
    query = _first_values(parts.query)
    fragment = _first_values(parts.fragment)
    return LandingParams(
        code=(query.get("code") or "").strip() or None,
        error=(query.get("error") or "").strip() or None,
        error_description=(query.get("error_description") or "").strip() or None,
        fragment=fragment,
    )
