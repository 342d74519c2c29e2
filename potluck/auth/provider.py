"""Client for the hosted identity provider (Supabase Auth).

The session lives in cookies, encoded the same way the provider's own server
side helpers encode it, so a session started in the browser can be picked up
here and the other way round.
"""
import base64
import json
import logging
import time
from typing import Any

import httpx
import jwt
from pydantic import BaseModel, ValidationError

from potluck.auth.cookies import CookieJar, CookieOptions, CookieToSet
from potluck.config import Config


logger = logging.getLogger(__name__)


BASE64_PREFIX = "base64-"
MAX_CHUNK_SIZE = 3180
COOKIE_MAX_AGE = 400 * 24 * 60 * 60
EXPIRY_MARGIN = 60


class AuthError(Exception):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class AuthUser(BaseModel):
    id: str
    email: str | None = None
    created_at: str | None = None
    user_metadata: dict[str, Any] | None = None


class Session(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: int
    expires_in: int | None = None
    token_type: str = "bearer"
    user: AuthUser

    def expires_soon(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at - now <= EXPIRY_MARGIN


def identity_client_factory(
    config: Config,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=config.auth_url,
        headers={
            "apikey": config.supabase_anon_key,
            "Content-Type": "application/json",
        },
        timeout=config.auth_timeout,
        transport=transport,
    )


def encode_cookie_value(raw: str) -> str:
    encoded = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")
    return BASE64_PREFIX + encoded.rstrip("=")


def decode_cookie_value(value: str) -> str:
    if not value.startswith(BASE64_PREFIX):
        return value
    data = value[len(BASE64_PREFIX) :]
    data += "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data.encode("ascii")).decode("utf-8")


def chunk(name: str, value: str, size: int = MAX_CHUNK_SIZE) -> list[tuple[str, str]]:
    if len(value) <= size:
        return [(name, value)]
    parts = [value[i : i + size] for i in range(0, len(value), size)]
    return [(f"{name}.{i}", part) for i, part in enumerate(parts)]


def combine_chunks(name: str, cookies: dict[str, str]) -> str | None:
    if name in cookies:
        return cookies[name]
    parts: list[str] = []
    i = 0
    while f"{name}.{i}" in cookies:
        parts.append(cookies[f"{name}.{i}"])
        i += 1
    return "".join(parts) if parts else None


def token_expiry(access_token: str) -> int:
    """Read the `exp` claim. The signature is the provider's business."""
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
        return int(claims["exp"])
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as e:
        raise AuthError("Invalid access token.", status=400) from e


class AuthClient:
    """Session-aware provider client bound to one cookie transport."""

    def __init__(
        self,
        *,
        config: Config,
        cookies: CookieJar,
        http: httpx.AsyncClient,
    ) -> None:
        self.config = config
        self.cookies = cookies
        self.http = http
        self.storage_key = f"sb-{config.project_ref}-auth-token"

    @property
    def verifier_key(self) -> str:
        return f"{self.storage_key}-code-verifier"

    def _options(self, max_age: int = COOKIE_MAX_AGE) -> CookieOptions:
        return CookieOptions(
            path="/",
            max_age=max_age,
            httponly=True,
            secure=self.config.cookie_secure,
            samesite="lax",
        )

    def _stored_names(self, name: str) -> list[str]:
        return [
            n
            for n, _ in self.cookies.get_all()
            if n == name or (n.startswith(f"{name}.") and n[len(name) + 1 :].isdigit())
        ]

    def _read_item(self, name: str) -> str | None:
        raw = combine_chunks(name, dict(self.cookies.get_all()))
        if raw is None:
            return None
        try:
            return decode_cookie_value(raw)
        except (ValueError, UnicodeDecodeError):
            logger.warning("Undecodable cookie %s", name)
            return None

    def _write_item(self, name: str, value: str) -> None:
        chunks = chunk(name, encode_cookie_value(value))
        new_names = {n for n, _ in chunks}
        stale = [n for n in self._stored_names(name) if n not in new_names]
        self.cookies.set_all(
            [CookieToSet(n, "", self._options(max_age=0)) for n in stale]
            + [CookieToSet(n, v, self._options()) for n, v in chunks]
        )

    def _remove_item(self, name: str) -> None:
        self.cookies.set_all(
            [CookieToSet(n, "", self._options(max_age=0)) for n in self._stored_names(name)]
        )

    def _save(self, session: Session) -> None:
        self._write_item(self.storage_key, session.model_dump_json())

    def _clear(self) -> None:
        self._remove_item(self.storage_key)

    def _stored_session(self) -> Session | None:
        raw = self._read_item(self.storage_key)
        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed session cookie")
            self._clear()
            return None

    async def _request(
        self,
        method: str,
        url: str,
        *,
        token: str | None = None,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {token or self.config.supabase_anon_key}"}
        try:
            resp = await self.http.request(
                method, url, headers=headers, params=params, json=json
            )
        except httpx.HTTPError as e:
            raise AuthError(f"Identity provider unreachable: {e!r}") from e

        if resp.is_error:
            message = resp.text
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                message = (
                    body.get("error_description")
                    or body.get("msg")
                    or body.get("message")
                    or body.get("error")
                    or message
                )
            raise AuthError(str(message), status=resp.status_code)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise AuthError("Identity provider sent invalid JSON.") from e

    def _session_from_token_response(self, data: dict[str, Any]) -> Session:
        if "expires_at" not in data and "expires_in" in data:
            data = {**data, "expires_at": int(time.time()) + int(data["expires_in"])}
        try:
            return Session.model_validate(data)
        except ValidationError as e:
            raise AuthError("Identity provider sent an incomplete session.") from e

    async def _refresh(self, refresh_token: str) -> Session:
        try:
            data = await self._request(
                "POST",
                "token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": refresh_token},
            )
        except AuthError as e:
            if e.status is not None and 400 <= e.status < 500:
                self._clear()
            raise
        session = self._session_from_token_response(data)
        self._save(session)
        return session

    async def get_session(self) -> Session | None:
        """The cookie session, refreshed when it is about to expire."""
        session = self._stored_session()
        if session is None:
            return None
        if not session.expires_soon():
            return session
        logger.info("Refreshing session for %s", session.user.id)
        return await self._refresh(session.refresh_token)

    async def get_user(self) -> AuthUser | None:
        """The current user, confirmed with the provider."""
        session = await self.get_session()
        if session is None:
            return None
        try:
            data = await self._request("GET", "user", token=session.access_token)
        except AuthError as e:
            if e.status in (401, 403):
                return None
            raise
        return AuthUser.model_validate(data)

    async def set_session(self, access_token: str, refresh_token: str) -> Session:
        """Adopt a token pair obtained by the browser."""
        if not access_token or not refresh_token:
            raise AuthError("Missing tokens.", status=400)
        expires_at = token_expiry(access_token)
        if expires_at - time.time() <= EXPIRY_MARGIN:
            return await self._refresh(refresh_token)
        data = await self._request("GET", "user", token=access_token)
        session = Session(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            expires_in=max(0, expires_at - int(time.time())),
            user=AuthUser.model_validate(data),
        )
        self._save(session)
        return session

    def _code_verifier(self) -> str | None:
        raw = self._read_item(self.verifier_key)
        if raw is None:
            return None
        if raw.startswith('"'):
            try:
                raw = json.loads(raw)
            except ValueError:
                return None
        # Recovery flows append "/PASSWORD_RECOVERY" to the verifier.
        return str(raw).split("/", 1)[0] or None

    async def exchange_code_for_session(self, code: str) -> Session:
        verifier = self._code_verifier()
        if verifier is None:
            raise AuthError("Code verifier not found in storage.", status=400)
        data = await self._request(
            "POST",
            "token",
            params={"grant_type": "pkce"},
            json={"auth_code": code, "code_verifier": verifier},
        )
        session = self._session_from_token_response(data)
        self._remove_item(self.verifier_key)
        self._save(session)
        return session

    async def sign_out(self) -> None:
        session = self._stored_session()
        if session is not None:
            try:
                await self._request("POST", "logout", token=session.access_token)
            except AuthError as e:
                logger.warning("Provider sign out failed, clearing locally: %s", e)
        self._clear()
