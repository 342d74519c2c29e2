"""Cookie transports for the auth client.

Each execution context hands the auth client a different place to read cookies
from and write them to. The client only ever sees `get_all` and `set_all`.
"""
from dataclasses import dataclass, field
import logging
from typing import Literal, Mapping, Sequence

from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CookieOptions:
    path: str = "/"
    max_age: int | None = None
    httponly: bool = True
    secure: bool = False
    samesite: Literal["lax", "strict", "none"] = "lax"


@dataclass(frozen=True)
class CookieToSet:
    name: str
    value: str
    options: CookieOptions = field(default_factory=CookieOptions)

    @property
    def is_removal(self) -> bool:
        return self.options.max_age is not None and self.options.max_age <= 0


class CookieWriteForbidden(Exception):
    pass


def write_cookie(response: Response, cookie: CookieToSet) -> None:
    opts = cookie.options
    response.set_cookie(
        cookie.name,
        cookie.value,
        max_age=opts.max_age,
        path=opts.path,
        secure=opts.secure,
        httponly=opts.httponly,
        samesite=opts.samesite,
    )


class CookieJar:
    """Request cookies plus whatever has been written since."""

    def __init__(self, cookies: Mapping[str, str]) -> None:
        self._cookies = dict(cookies)

    def get_all(self) -> list[tuple[str, str]]:
        return list(self._cookies.items())

    def get(self, name: str) -> str | None:
        return self._cookies.get(name)

    def set_all(self, cookies: Sequence[CookieToSet]) -> None:
        if not cookies:
            return
        try:
            self._write(cookies)
        except CookieWriteForbidden as e:
            logger.warning(
                "Could not write cookies %s: %s",
                [c.name for c in cookies],
                e,
            )
            return
        for cookie in cookies:
            if cookie.is_removal:
                self._cookies.pop(cookie.name, None)
            else:
                self._cookies[cookie.name] = cookie.value

    def _write(self, cookies: Sequence[CookieToSet]) -> None:
        raise NotImplementedError


class PageCookies(CookieJar):
    """Cookies as seen while rendering a page. Writes are not possible here."""

    def __init__(self, request: Request) -> None:
        super().__init__(request.cookies)

    def _write(self, cookies: Sequence[CookieToSet]) -> None:
        raise CookieWriteForbidden("response headers are not writable while rendering")


class ResponseCookies(CookieJar):
    """Cookies for a route handler that already owns its response."""

    def __init__(self, request: Request, response: Response) -> None:
        super().__init__(request.cookies)
        self.response = response

    def _write(self, cookies: Sequence[CookieToSet]) -> None:
        for cookie in cookies:
            write_cookie(self.response, cookie)


class MiddlewareCookies(CookieJar):
    """Cookies for the gate.

    The response does not exist yet when the session is looked up, so writes
    are held until `apply`. They are also pushed into the request's Cookie
    header so that the handler downstream sees the fresh values.
    """

    def __init__(self, request: Request) -> None:
        super().__init__(request.cookies)
        self.request = request
        self.pending: list[CookieToSet] = []

    def _write(self, cookies: Sequence[CookieToSet]) -> None:
        self.pending.extend(cookies)

    def set_all(self, cookies: Sequence[CookieToSet]) -> None:
        super().set_all(cookies)
        self._rewrite_request_header()

    def _rewrite_request_header(self) -> None:
        header = "; ".join(f"{name}={value}" for name, value in self._cookies.items())
        headers = [
            (k, v) for k, v in self.request.scope["headers"] if k != b"cookie"
        ]
        if header:
            headers.append((b"cookie", header.encode("latin-1")))
        self.request.scope["headers"] = headers

    def apply(self, response: Response) -> Response:
        for cookie in self.pending:
            write_cookie(response, cookie)
        return response
