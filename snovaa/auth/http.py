from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Type

import requests

from snovaa.auth.errors import AuthError, ProviderUnavailable, ValidationError


def _error_details(r: requests.Response) -> Tuple[str, Optional[str]]:
    try:
        data = r.json()
    except ValueError:
        data = None
    message = None
    code = None
    if isinstance(data, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = data.get(key)
            if value:
                message = str(value)
                break
        raw_code = data.get("error_code") or data.get("code") or data.get("error")
        code = str(raw_code) if raw_code else None
    return message or f"Request failed (status={r.status_code})", code


def raise_for_status(r: requests.Response, *, rejected: Type[AuthError] = ValidationError) -> None:
    """
    Map an HTTP error status onto the auth error taxonomy.

    Provider messages are passed through verbatim; 5xx means the service itself is unavailable.
    """
    if r.status_code < 400:
        return
    message, code = _error_details(r)
    if r.status_code >= 500 or r.status_code == 429:
        raise ProviderUnavailable(message, code=code)
    raise rejected(message, code=code)


def send(
    http: requests.Session,
    method: str,
    url: str,
    *,
    headers: Dict[str, str],
    timeout: float,
    params: Optional[Dict[str, str]] = None,
    json_body: Optional[Any] = None,
) -> requests.Response:
    """Blocking request; transport failures become ProviderUnavailable."""
    try:
        return http.request(method, url, params=params, json=json_body, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        raise ProviderUnavailable(f"Service unreachable ({type(e).__name__})") from e


def json_body(r: requests.Response) -> Any:
    if not r.content:
        return None
    try:
        return r.json()
    except ValueError as e:
        raise ProviderUnavailable("Invalid response from service") from e
