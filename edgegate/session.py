"""Session continuity for the hosted auth collaborator.

The gate does not decide whether a request is authenticated. It only keeps the
session cookie fresh: validate a live access token, trade an expired one for a
new pair, or clear a session the auth service has rejected. Downstream handlers
read `request.state.session` and enforce sign-in themselves.

Cookie format follows the hosted auth SDK: a JSON session object stored under
`sb-<project-ref>-auth-token`, either raw or as `base64-<base64url(json)>`.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx
from starlette.requests import Request
from starlette.responses import Response

from .config import Settings
from .observability import log_event

# Refresh slightly before expiry so downstream handlers never see a token die mid-request.
_EXPIRY_MARGIN_S = 30
_COOKIE_MAX_AGE_S = 400 * 24 * 60 * 60
_BASE64_PREFIX = "base64-"
_REJECTED_STATUSES = {400, 401, 403}


@dataclass(frozen=True)
class SessionCookie:
    name: str
    value: str
    max_age: int = _COOKIE_MAX_AGE_S

    @property
    def is_deletion(self) -> bool:
        return self.max_age <= 0


@dataclass(frozen=True)
class SessionResult:
    user_id: str | None = None
    cookies: tuple[SessionCookie, ...] = ()
    refreshed: bool = False

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = SessionResult()


@dataclass(frozen=True)
class SessionRefreshFailure(Exception):
    """The auth collaborator could not be reached or answered with a server error."""

    detail: str
    status_code: int | None = None


class SessionRefresher(Protocol):
    async def refresh(self, request: Request) -> SessionResult: ...

    async def aclose(self) -> None: ...


class NoopSessionRefresher:
    """Used when no auth backend is configured: every request is anonymous."""

    async def refresh(self, request: Request) -> SessionResult:  # noqa: ARG002
        return ANONYMOUS

    async def aclose(self) -> None:
        return None


def cookie_name_for(supabase_url: str) -> str:
    host = urlparse(supabase_url).hostname or ""
    ref = host.split(".")[0] if host else "local"
    return f"sb-{ref}-auth-token"


def decode_session_cookie(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    text = raw
    if text.startswith(_BASE64_PREFIX):
        encoded = text[len(_BASE64_PREFIX):]
        try:
            text = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict) or not data.get("refresh_token"):
        return None
    return data


def encode_session_cookie(session: dict[str, Any]) -> str:
    raw = json.dumps(session, separators=(",", ":")).encode("utf-8")
    return _BASE64_PREFIX + base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        raise SessionRefreshFailure(detail="auth service returned invalid JSON", status_code=resp.status_code) from e


def _user_id(payload: Any) -> str | None:
    if isinstance(payload, dict):
        uid = payload.get("id")
        if isinstance(uid, str) and uid:
            return uid
    return None


class SupabaseSessionRefresher:
    def __init__(
        self,
        *,
        base_url: str,
        anon_key: str,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.cookie_name = cookie_name_for(self.base_url)
        self.clock = clock
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=min(timeout_s, 5.0)))

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self.anon_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _clear(self) -> SessionResult:
        return SessionResult(cookies=(SessionCookie(name=self.cookie_name, value="", max_age=0),))

    async def _call(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise SessionRefreshFailure(detail=f"{type(e).__name__}: {e}") from e
        if resp.status_code >= 500:
            raise SessionRefreshFailure(detail="auth service error", status_code=resp.status_code)
        return resp

    async def _get_user(self, access_token: str) -> httpx.Response:
        return await self._call("GET", "/auth/v1/user", headers=self._headers(access_token))

    async def _refresh_tokens(self, refresh_token: str) -> httpx.Response:
        return await self._call(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            headers=self._headers(),
            json={"refresh_token": refresh_token},
        )

    async def refresh(self, request: Request) -> SessionResult:
        raw = request.cookies.get(self.cookie_name)
        if raw is None:
            return ANONYMOUS

        session = decode_session_cookie(raw)
        if session is None:
            # Unreadable cookie; drop it so the browser stops sending it.
            return self._clear()

        expires_at = session.get("expires_at")
        access_token = session.get("access_token")
        live = (
            isinstance(access_token, str)
            and isinstance(expires_at, (int, float))
            and expires_at - _EXPIRY_MARGIN_S > self.clock()
        )

        if live:
            resp = await self._get_user(access_token)
            if resp.status_code == 200:
                return SessionResult(user_id=_user_id(_json(resp)))
            if resp.status_code not in _REJECTED_STATUSES:
                raise SessionRefreshFailure(detail="unexpected user response", status_code=resp.status_code)
            # Token revoked server-side; a refresh may still succeed.

        resp = await self._refresh_tokens(str(session["refresh_token"]))
        if resp.status_code in _REJECTED_STATUSES:
            return self._clear()
        if resp.status_code != 200:
            raise SessionRefreshFailure(detail="unexpected token response", status_code=resp.status_code)

        new_session = _json(resp)
        if not isinstance(new_session, dict) or not new_session.get("refresh_token"):
            raise SessionRefreshFailure(detail="malformed token response", status_code=resp.status_code)
        if "expires_at" not in new_session and isinstance(new_session.get("expires_in"), (int, float)):
            new_session["expires_at"] = int(self.clock()) + int(new_session["expires_in"])

        log_event("session.refreshed", severity="DEBUG", user_id=_user_id(new_session.get("user")))
        return SessionResult(
            user_id=_user_id(new_session.get("user")),
            cookies=(SessionCookie(name=self.cookie_name, value=encode_session_cookie(new_session)),),
            refreshed=True,
        )


def apply_session_cookies(response: Response, result: SessionResult, *, secure: bool) -> None:
    for cookie in result.cookies:
        if cookie.is_deletion:
            response.delete_cookie(cookie.name, path="/", secure=secure, httponly=False, samesite="lax")
            continue
        response.set_cookie(
            cookie.name,
            cookie.value,
            max_age=cookie.max_age,
            path="/",
            secure=secure,
            httponly=False,
            samesite="lax",
        )


def build_session_refresher(settings: Settings) -> SessionRefresher:
    if settings.session_backend_configured:
        return SupabaseSessionRefresher(
            base_url=settings.supabase_url or "",
            anon_key=settings.supabase_anon_key or "",
            timeout_s=settings.session_refresh_timeout_s,
        )
    return NoopSessionRefresher()
