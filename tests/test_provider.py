import json
import time
from typing import AsyncIterator

import httpx
import jwt
import pytest
import pytest_asyncio

from conftest import TOKEN_SECRET, FakeProvider, RecordingCookies, make_token, session_cookie
from potluck.auth.provider import (
    MAX_CHUNK_SIZE,
    AuthClient,
    AuthError,
    chunk,
    combine_chunks,
    decode_cookie_value,
    encode_cookie_value,
    identity_client_factory,
    token_expiry,
)
from potluck.config import Config


KEY = "sb-abcd-auth-token"


@pytest_asyncio.fixture
async def http(config: Config, transport: httpx.MockTransport) -> AsyncIterator[httpx.AsyncClient]:
    async with identity_client_factory(config, transport=transport) as c:
        yield c


def auth_client(config: Config, http: httpx.AsyncClient, cookies: RecordingCookies) -> AuthClient:
    return AuthClient(config=config, cookies=cookies, http=http)


def test_project_ref(config: Config) -> None:
    assert config.project_ref == "abcd"
    assert config.auth_url == "https://abcd.supabase.co/auth/v1/"


def test_cookie_value_codec() -> None:
    encoded = encode_cookie_value('{"a": "é"}')
    assert encoded.startswith("base64-")
    assert "=" not in encoded
    assert decode_cookie_value(encoded) == '{"a": "é"}'
    assert decode_cookie_value("plain") == "plain"


def test_chunking() -> None:
    value = "x" * (MAX_CHUNK_SIZE * 2 + 5)
    parts = chunk(KEY, value)
    assert [n for n, _ in parts] == [f"{KEY}.0", f"{KEY}.1", f"{KEY}.2"]
    assert combine_chunks(KEY, dict(parts)) == value
    assert chunk(KEY, "short") == [(KEY, "short")]
    assert combine_chunks(KEY, {}) is None


def test_token_expiry() -> None:
    assert token_expiry(make_token("u1", 1234)) == 1234
    with pytest.raises(AuthError):
        token_expiry("not-a-jwt")


def test_token_expiry_needs_exp_claim() -> None:
    token = jwt.encode({"sub": "u1"}, TOKEN_SECRET, algorithm="HS256")
    with pytest.raises(AuthError) as e:
        token_expiry(token)
    assert e.value.status == 400


@pytest.mark.asyncio
async def test_no_cookie_no_session(config: Config, http: httpx.AsyncClient, provider: FakeProvider) -> None:
    client = auth_client(config, http, RecordingCookies())
    assert await client.get_session() is None
    assert await client.get_user() is None
    assert provider.requests == []


@pytest.mark.asyncio
async def test_fresh_cookie_used_without_network(
    config: Config, http: httpx.AsyncClient, provider: FakeProvider
) -> None:
    session = provider.issue()
    cookies = RecordingCookies(dict([session_cookie(config, session)]))
    got = await auth_client(config, http, cookies).get_session()
    assert got is not None
    assert got.user.id == "u1"
    assert provider.requests == []
    assert cookies.written == []


@pytest.mark.asyncio
async def test_expiring_session_is_refreshed(
    config: Config, http: httpx.AsyncClient, provider: FakeProvider
) -> None:
    old = provider.issue(expires_in=30)
    cookies = RecordingCookies(dict([session_cookie(config, old)]))
    got = await auth_client(config, http, cookies).get_session()
    assert got is not None
    assert got.refresh_token != old.refresh_token
    assert [c.name for c in cookies.written] == [KEY]
    assert cookies.written[0].options.httponly


@pytest.mark.asyncio
async def test_rejected_refresh_raises_and_clears(
    config: Config, http: httpx.AsyncClient, provider: FakeProvider
) -> None:
    old = provider.issue(expires_in=-5)
    provider.refresh_tokens.clear()
    cookies = RecordingCookies(dict([session_cookie(config, old)]))
    with pytest.raises(AuthError) as e:
        await auth_client(config, http, cookies).get_session()
    assert e.value.status == 400
    assert e.value.message == "Invalid grant"
    assert cookies.get(KEY) is None


@pytest.mark.asyncio
async def test_timeout_becomes_auth_error(
    config: Config, http: httpx.AsyncClient, provider: FakeProvider
) -> None:
    old = provider.issue(expires_in=-5)
    provider.fail_with = httpx.ConnectTimeout("too slow")
    cookies = RecordingCookies(dict([session_cookie(config, old)]))
    with pytest.raises(AuthError):
        await auth_client(config, http, cookies).get_session()
    assert cookies.get(KEY) is not None


@pytest.mark.asyncio
async def test_set_session_writes_cookie(
    config: Config, http: httpx.AsyncClient, provider: FakeProvider
) -> None:
    issued = provider.issue(user_id="u2", email="cook@example.com")
    cookies = RecordingCookies()
    session = await auth_client(config, http, cookies).set_session(
        issued.access_token, issued.refresh_token
    )
    assert session.user.email == "cook@example.com"
    assert session.refresh_token == issued.refresh_token
    stored = json.loads(decode_cookie_value(cookies.get(KEY) or ""))
    assert stored["user"]["id"] == "u2"
    request = provider.requests[-1]
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == f"Bearer {issued.access_token}"


@pytest.mark.asyncio
async def test_set_session_rejected(config: Config, http: httpx.AsyncClient, provider: FakeProvider) -> None:
    token = make_token("ghost", int(time.time()) + 3600)
    cookies = RecordingCookies()
    with pytest.raises(AuthError) as e:
        await auth_client(config, http, cookies).set_session(token, "r")
    assert e.value.status == 401
    assert cookies.written == []


@pytest.mark.asyncio
async def test_set_session_with_expired_access_token_refreshes(
    config: Config, http: httpx.AsyncClient, provider: FakeProvider
) -> None:
    issued = provider.issue(expires_in=-10)
    cookies = RecordingCookies()
    session = await auth_client(config, http, cookies).set_session(
        issued.access_token, issued.refresh_token
    )
    assert session.access_token != issued.access_token
    assert not session.expires_soon()


@pytest.mark.asyncio
async def test_large_session_is_chunked_and_stale_chunks_removed(
    config: Config, http: httpx.AsyncClient, provider: FakeProvider
) -> None:
    issued = provider.issue()
    provider.users[issued.access_token]["user_metadata"] = {"bio": "y" * 5000}
    cookies = RecordingCookies({KEY: "old", f"{KEY}.5": "stale"})
    await auth_client(config, http, cookies).set_session(issued.access_token, issued.refresh_token)

    names = [n for n, _ in cookies.get_all()]
    assert KEY not in names
    assert f"{KEY}.5" not in names
    assert f"{KEY}.0" in names and f"{KEY}.1" in names

    again = await auth_client(config, http, cookies).get_session()
    assert again is not None
    assert again.user.user_metadata == {"bio": "y" * 5000}


@pytest.mark.asyncio
async def test_exchange_code(config: Config, http: httpx.AsyncClient, provider: FakeProvider) -> None:
    provider.codes[("the-code", "verifier")] = {"id": "u3", "email": "c@d.com"}
    verifier_cookie = encode_cookie_value(json.dumps("verifier/PASSWORD_RECOVERY"))
    cookies = RecordingCookies({f"{KEY}-code-verifier": verifier_cookie})
    session = await auth_client(config, http, cookies).exchange_code_for_session("the-code")
    assert session.user.id == "u3"
    assert cookies.get(f"{KEY}-code-verifier") is None
    assert cookies.get(KEY) is not None


@pytest.mark.asyncio
async def test_exchange_code_without_verifier(config: Config, http: httpx.AsyncClient, provider: FakeProvider) -> None:
    with pytest.raises(AuthError):
        await auth_client(config, http, RecordingCookies()).exchange_code_for_session("c")
    assert provider.requests == []


@pytest.mark.asyncio
async def test_get_user_with_revoked_token(config: Config, http: httpx.AsyncClient, provider: FakeProvider) -> None:
    session = provider.issue()
    del provider.users[session.access_token]
    cookies = RecordingCookies(dict([session_cookie(config, session)]))
    assert await auth_client(config, http, cookies).get_user() is None


@pytest.mark.asyncio
async def test_sign_out_clears_even_when_provider_fails(
    config: Config, http: httpx.AsyncClient, provider: FakeProvider
) -> None:
    session = provider.issue()
    cookies = RecordingCookies(dict([session_cookie(config, session)]))
    provider.fail_with = httpx.ConnectError("down")
    await auth_client(config, http, cookies).sign_out()
    assert cookies.get(KEY) is None
    assert cookies.written[0].options.max_age == 0
