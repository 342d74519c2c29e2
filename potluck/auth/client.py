"""One auth client, three ways of reaching the cookies.

The http client and config are created once at startup and live on
`app.state`. Only the cookie transport differs per request.
"""
from starlette.requests import Request
from starlette.responses import Response

from potluck.auth.cookies import CookieJar, MiddlewareCookies, PageCookies, ResponseCookies
from potluck.auth.provider import AuthClient


def _client(request: Request, cookies: CookieJar) -> AuthClient:
    return AuthClient(
        config=request.app.state.config,
        cookies=cookies,
        http=request.app.state.identity_http,
    )


def middleware_client(request: Request) -> tuple[AuthClient, MiddlewareCookies]:
    cookies = MiddlewareCookies(request)
    return _client(request, cookies), cookies


def page_client(request: Request) -> AuthClient:
    return _client(request, PageCookies(request))


def route_client(request: Request, response: Response) -> AuthClient:
    return _client(request, ResponseCookies(request, response))
