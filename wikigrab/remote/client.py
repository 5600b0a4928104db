"""
API Client — httpx implementation of ``RemoteSource``.

Talks to a MediaWiki ``api.php`` endpoint with ``format=json`` and
``formatversion=2``. One ``httpx.Client`` is shared for the whole run so
login cookies persist across requests.

## Error Mapping

| Condition                                 | Raised                    |
|-------------------------------------------|---------------------------|
| timeout, connection reset, HTTP 5xx/429   | ``TransientIOError``      |
| HTTP 401/403, permission error codes      | ``AuthorizationError``    |
| maxlag / readonly / ratelimited codes     | ``TransientIOError``      |
| body is not JSON                          | ``MalformedResponseError``|
| any other API ``error``                   | ``GrabberError``          |

## Usage

    client = ApiClient("https://wiki.example.org/w/api.php")
    client.login("Bot", "secret")
    payload = client.query({"list": "allrevisions", "arvlimit": "max"})
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from .. import __version__
from ..errors import (
    AuthorizationError,
    GrabberError,
    MalformedResponseError,
    TransientIOError,
)
from ..models.records import RemoteRevision
from .base import REVISION_PROPS, RemoteSource

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"wikigrab/{__version__}"

# API error codes meaning "you may not see this"
PERMISSION_CODES = {
    "permissiondenied",
    "readapidenied",
    "badaccess-groups",
    "assertuserfailed",
    "assertbotfailed",
    "notloggedin",
    "mustbeloggedin",
}

# API error codes that go away on their own
TRANSIENT_CODES = {"maxlag", "readonly", "ratelimited", "internal_api_error_DBQueryError"}


def encode_params(params: Mapping[str, Any]) -> Dict[str, str]:
    """
    Flatten a parameter map to what ``api.php`` expects.

    Lists become ``|``-joined strings, ``True`` becomes an empty flag
    value and ``False``/``None`` entries are dropped.
    """
    encoded: Dict[str, str] = {}
    for key, value in params.items():
        if value is None or value is False:
            continue
        if value is True:
            encoded[key] = ""
        elif isinstance(value, (list, tuple, set)):
            encoded[key] = "|".join(str(v) for v in value)
        else:
            encoded[key] = str(value)
    return encoded


class ApiClient(RemoteSource):
    """Blocking client for one remote ``api.php`` endpoint."""

    def __init__(
        self,
        api_url: str,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 60.0,
        http: Optional[httpx.Client] = None,
    ):
        self.api_url = api_url
        self._http = http or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
        )

    # ─── Transport ──────────────────────────────────────────

    def _request(
        self,
        params: Mapping[str, Any],
        data: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        query = {"format": "json", "formatversion": "2", **encode_params(params)}
        try:
            if data is None:
                response = self._http.get(self.api_url, params=query)
            else:
                response = self._http.post(self.api_url, params=query, data=encode_params(data))
        except httpx.TimeoutException as e:
            raise TransientIOError(f"Request timed out: {e}", {"url": self.api_url}) from e
        except httpx.TransportError as e:
            raise TransientIOError(f"Request failed: {e}", {"url": self.api_url}) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthorizationError(f"Remote refused the request (HTTP {status})")
        if status == 429 or status >= 500:
            raise TransientIOError(f"Remote unavailable (HTTP {status})", {"url": self.api_url})
        if status >= 400:
            raise GrabberError(f"Unexpected HTTP {status}", {"url": self.api_url})

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError("Response body is not JSON", {"url": self.api_url}) from e
        if not isinstance(payload, dict):
            raise MalformedResponseError("Response body is not a JSON object")

        self._check_error(payload)
        for module, warning in (payload.get("warnings") or {}).items():
            logger.debug(f"API warning from {module}: {warning}")
        return payload

    @staticmethod
    def _check_error(payload: Mapping[str, Any]) -> None:
        error = payload.get("error")
        if not error:
            return
        code = error.get("code", "unknown") if isinstance(error, Mapping) else "unknown"
        info = error.get("info", "") if isinstance(error, Mapping) else str(error)
        details = {"code": code}
        if code in PERMISSION_CODES or code.endswith("-denied"):
            raise AuthorizationError(f"Missing rights for request: {info}", details)
        if code in TRANSIENT_CODES:
            raise TransientIOError(f"Remote temporarily refused request: {info}", details)
        raise GrabberError(f"API error: {info}", details)

    # ─── RemoteSource ───────────────────────────────────────

    def query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._request({"action": "query", **params})

    def fetch_revision(self, rev_id: int) -> Optional[RemoteRevision]:
        payload = self.query(
            {
                "prop": "revisions",
                "revids": rev_id,
                "rvprop": REVISION_PROPS,
                "rvslots": "main",
            }
        )
        result = payload.get("query") or {}
        if result.get("badrevids"):
            return None
        for page in result.get("pages") or []:
            for rev in page.get("revisions") or []:
                if int(rev.get("revid", 0)) == rev_id:
                    return RemoteRevision.from_api(rev, page)
        return None

    def fetch_user_name(self, user_id: int) -> Optional[str]:
        payload = self.query({"list": "users", "ususerids": user_id})
        users = (payload.get("query") or {}).get("users") or []
        if not users:
            return None
        user = users[0]
        if user.get("missing") or user.get("invalid") or not user.get("name"):
            return None
        return user["name"]

    # ─── Login ──────────────────────────────────────────────

    def login(self, username: str, password: str) -> None:
        """Log in with a bot password. Raises ``AuthorizationError`` on failure."""
        tokens = self.query({"meta": "tokens", "type": "login"})
        token = ((tokens.get("query") or {}).get("tokens") or {}).get("logintoken")
        if not token:
            raise MalformedResponseError("Login token missing from response")

        payload = self._request(
            {"action": "login"},
            data={"lgname": username, "lgpassword": password, "lgtoken": token},
        )
        result = (payload.get("login") or {}).get("result")
        if result != "Success":
            reason = (payload.get("login") or {}).get("reason", result)
            raise AuthorizationError(f"Login failed: {reason}", {"user": username})
        logger.info(f"Logged in as {username}")

    def close(self) -> None:
        self._http.close()
