"""Handing a browser session to the server, and taking it away again."""
import logging
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from potluck.auth.client import route_client
from potluck.auth.provider import AuthError, AuthUser
from potluck.db import ProfilesRepository
from potluck.domain.models import Profile
from potluck.domain.services import sync_profile


logger = logging.getLogger(__name__)


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def sync_profile_quietly(
    request: Request,
    user: AuthUser,
    username: str | None = None,
) -> Profile | None:
    """Upsert the profile. Failure is logged; the next sign-in tries again."""
    try:
        return await sync_profile(
            id=user.id,
            email=user.email,
            username=username,
            repository=ProfilesRepository(request.app.state.db),
        )
    except Exception:
        logger.exception("Could not sync profile for %s", user.id)
        return None


async def set_session(request: Request) -> Response:
    body = await _json_body(request)
    access_token = body.get("access_token")
    refresh_token = body.get("refresh_token")
    if not access_token or not refresh_token:
        return PlainTextResponse("Missing tokens", status_code=400)

    carrier = Response()
    client = route_client(request, carrier)
    try:
        session = await client.set_session(str(access_token), str(refresh_token))
    except AuthError as e:
        logger.error("Provider rejected session: %s", e.message)
        return JSONResponse({"error": e.message}, status_code=500)

    username = body.get("username")
    await sync_profile_quietly(
        request, session.user, username if isinstance(username, str) else None
    )

    # Cookies were written before the user was known.
    response = JSONResponse({"user_id": session.user.id})
    response.raw_headers.extend(
        (k, v) for k, v in carrier.raw_headers if k == b"set-cookie"
    )
    return response


async def welcome(request: Request) -> Response:
    """Landing route for email links and OAuth."""
    base_url = request.app.state.config.base_url.rstrip("/")
    response = RedirectResponse(f"{base_url}/", status_code=303)
    client = route_client(request, response)

    code = request.query_params.get("code")
    try:
        if code:
            await client.exchange_code_for_session(code)
        user = await client.get_user()
    except AuthError as e:
        logger.warning("Auth callback failed: %s", e.message)
        return RedirectResponse(f"{base_url}/login", status_code=303)

    if user is None:
        return RedirectResponse(f"{base_url}/login", status_code=303)

    await sync_profile_quietly(request, user)
    return response


async def sign_out(request: Request) -> Response:
    response = RedirectResponse("/login", status_code=303)
    await route_client(request, response).sign_out()
    return response


async def create_user(request: Request) -> Response:
    body = await _json_body(request)
    id = body.get("id")
    email = body.get("email")
    username = body.get("username")
    if not id or not email:
        return JSONResponse({"error": "Missing required fields"}, status_code=400)

    session = request.state.session
    if session is None or session.user.id != id:
        return JSONResponse({"error": "Forbidden"}, status_code=403)

    try:
        profile = await sync_profile(
            id=str(id),
            email=str(email),
            username=username if isinstance(username, str) else None,
            repository=ProfilesRepository(request.app.state.db),
        )
    except Exception:
        logger.exception("Failed to create user %s", id)
        return JSONResponse({"error": "Failed to create user"}, status_code=500)

    logger.info("User created: %s", profile.id)
    return JSONResponse({"user": profile.to_dict()}, status_code=201)
