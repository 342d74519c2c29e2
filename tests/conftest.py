import json
from pathlib import Path
import time
from typing import Any, Iterator, Sequence
import uuid

import httpx
import jwt
import pytest
from starlette.applications import Starlette
from starlette.testclient import TestClient

from potluck.app import create_app
from potluck.auth.cookies import CookieJar, CookieToSet
from potluck.auth.provider import AuthUser, Session, encode_cookie_value
from potluck.config import Config
from potluck.db import ProfilesRepository
from potluck.domain.models import Profile


TOKEN_SECRET = "potluck-test-secret-0123456789abcdef"


def make_token(sub: str, exp: int) -> str:
    return jwt.encode({"sub": sub, "exp": exp}, TOKEN_SECRET, algorithm="HS256")


class FakeProvider:
    """Just enough of the provider's auth API."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.refresh_tokens: dict[str, dict[str, Any]] = {}
        self.codes: dict[tuple[str, str], dict[str, Any]] = {}
        self.fail_with: Exception | None = None
        self.requests: list[httpx.Request] = []
        self.directory: list[dict[str, Any]] = [
            {"id": 1, "name": "Leanne Graham"},
            {"id": 2, "name": "Ervin Howell"},
        ]

    def issue(
        self,
        user_id: str = "u1",
        email: str | None = "a@b.com",
        expires_in: int = 3600,
    ) -> Session:
        expires_at = int(time.time()) + expires_in
        user = {
            "id": user_id,
            "email": email,
            "created_at": "2024-01-02T03:04:05Z",
            "user_metadata": {},
        }
        access = make_token(user_id, expires_at)
        refresh = f"refresh-{uuid.uuid4().hex}"
        self.users[access] = user
        self.refresh_tokens[refresh] = user
        return Session(
            access_token=access,
            refresh_token=refresh,
            expires_at=expires_at,
            expires_in=expires_in,
            user=AuthUser.model_validate(user),
        )

    def auth_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/auth/v1/")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "directory.test":
            return httpx.Response(200, json=self.directory)
        if self.fail_with is not None:
            raise self.fail_with

        path = request.url.path
        if path == "/auth/v1/user":
            token = request.headers["authorization"].removeprefix("Bearer ")
            user = self.users.get(token)
            if user is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json=user)

        if path == "/auth/v1/token":
            body = json.loads(request.content)
            match request.url.params["grant_type"]:
                case "refresh_token":
                    user = self.refresh_tokens.pop(body["refresh_token"], None)
                case "pkce":
                    user = self.codes.pop((body["auth_code"], body["code_verifier"]), None)
                case _:
                    user = None
            if user is None:
                return httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "Invalid grant"},
                )
            session = self.issue(user["id"], user["email"])
            return httpx.Response(200, json=session.model_dump())

        if path == "/auth/v1/logout":
            return httpx.Response(204)

        return httpx.Response(404)


class RecordingCookies(CookieJar):
    def __init__(self, cookies: dict[str, str] | None = None) -> None:
        super().__init__(cookies or {})
        self.written: list[CookieToSet] = []

    def _write(self, cookies: Sequence[CookieToSet]) -> None:
        self.written.extend(cookies)


def session_cookie(config: Config, session: Session) -> tuple[str, str]:
    return (
        f"sb-{config.project_ref}-auth-token",
        encode_cookie_value(session.model_dump_json()),
    )


def set_cookies(response: httpx.Response) -> list[str]:
    return response.headers.get_list("set-cookie")


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(  # pyright: ignore[reportCallIssue]
        supabase_url="https://abcd.supabase.co",
        supabase_anon_key="anon-key",
        base_url="http://testserver",
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        directory_url="https://directory.test/users",
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def transport(provider: FakeProvider) -> httpx.MockTransport:
    return httpx.MockTransport(provider.handler)


@pytest.fixture
def app(config: Config, transport: httpx.MockTransport) -> Starlette:
    return create_app(config, transport=transport)


@pytest.fixture
def client(app: Starlette) -> Iterator[TestClient]:
    with TestClient(app, follow_redirects=False) as c:
        yield c


@pytest.fixture
def signed_in(
    client: TestClient,
    config: Config,
    provider: FakeProvider,
) -> Session:
    session = provider.issue()
    client.cookies.set(*session_cookie(config, session))
    return session


def find_profile(client: TestClient, app: Starlette, id: str) -> Profile | None:
    repo = ProfilesRepository(app.state.db)
    return client.portal.call(repo.find, id)  # pyright: ignore[reportOptionalMemberAccess]
