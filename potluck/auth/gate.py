"""Request time access control."""
from enum import Enum
import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from potluck.auth.client import middleware_client
from potluck.auth.provider import Session


logger = logging.getLogger(__name__)


# Never gated. These are how a session gets established or torn down.
EXCLUDED_PREFIXES = ("/auth/", "/api/auth/", "/assets/", "/favicon.ico")

PUBLIC_PREFIXES = (
    "/login",
    "/signup",
    "/reset-password",
    "/reset-password/confirm",
    "/auth/welcome",
)

SIGNED_OUT_ONLY = frozenset({"/login", "/signup"})


class Decision(Enum):
    allow = "allow"
    login = "/login"
    home = "/"


def is_excluded(path: str) -> bool:
    return any(path.startswith(p) for p in EXCLUDED_PREFIXES)


def is_public(path: str) -> bool:
    return any(path.startswith(p) for p in PUBLIC_PREFIXES)


def decide(path: str, has_session: bool) -> Decision:
    if is_excluded(path):
        return Decision.allow
    if not has_session and not is_public(path):
        return Decision.login
    if has_session and path in SIGNED_OUT_ONLY:
        return Decision.home
    return Decision.allow


class AccessGateMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        request.state.session = None
        if is_excluded(path):
            return await call_next(request)

        client, cookies = middleware_client(request)
        session: Session | None
        try:
            session = await client.get_session()
        except Exception:
            # Fail closed.
            logger.exception("Session lookup failed for %s", path)
            session = None
        request.state.session = session

        decision = decide(path, session is not None)
        if decision is not Decision.allow:
            logger.info("Redirecting %s to %s", path, decision.value)
            return cookies.apply(RedirectResponse(decision.value, status_code=307))

        response = await call_next(request)
        return cookies.apply(response)
