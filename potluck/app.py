import contextlib
from datetime import datetime
import functools
import logging
from typing import Any, Awaitable, Callable

import httpx
from databases import Database
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from potluck import config
from potluck.auth import sync
from potluck.auth.client import page_client
from potluck.auth.gate import AccessGateMiddleware
from potluck.auth.provider import AuthError, AuthUser, identity_client_factory
from potluck.db import (
    ProfilesRepository,
    RecipeNotFound,
    RecipesRepository,
    create_tables,
)
from potluck.directory import fetch_users
from potluck.domain.services import (
    InvalidRecipe,
    NotRecipeAuthor,
    ProfileStats,
    create_recipe,
    edit_recipe,
    sync_profile,
    update_username,
)
from potluck.html.recipe_card import cards
from potluck.html.recipe_detail import RecipeDetail
from potluck.logs import configure_logging


logger = logging.getLogger(__name__)


RECIPE_FIELDS = ("title", "description", "image_url", "video_url", "cook_time")


API_RECIPE_FIELDS = {
    "description": "description",
    "image_url": "imageUrl",
    "video_url": "videoUrl",
    "cook_time": "cookTime",
}


def aHTMLResponse(route: Callable[..., Awaitable[str | tuple[str, int]]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> HTMLResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            html, code = resp, 200
        else:
            html, code = resp
        return HTMLResponse(html, status_code=code)

    return wrapper


def render(request: Request, name: str, **context: Any) -> str:
    templates: Environment = request.app.state.templates
    conf: config.Config = request.app.state.config
    session = getattr(request.state, "session", None)
    return templates.get_template(name).render(
        user=session.user if session is not None else None,
        supabase_url=conf.supabase_url,
        supabase_anon_key=conf.supabase_anon_key,
        **context,
    )


def session_user(request: Request) -> AuthUser | None:
    session = getattr(request.state, "session", None)
    return session.user if session is not None else None


def profiles(request: Request) -> ProfilesRepository:
    return ProfilesRepository(request.app.state.db)


def recipes(request: Request) -> RecipesRepository:
    return RecipesRepository(request.app.state.db)


async def ensure_author(request: Request, user: AuthUser) -> None:
    # Profile sync at sign-in may have failed, recipes need an author row.
    await sync_profile(id=user.id, email=user.email, repository=profiles(request))


@aHTMLResponse
async def homepage(request: Request) -> str:
    try:
        latest = await recipes(request).list()
    except Exception:
        logger.exception("Error loading recipes")
        return render(request, "index.html", recipes=None, error=True)
    return render(request, "index.html", recipes=cards(latest), error=False)


@aHTMLResponse
async def recipe_list(request: Request) -> str:
    return render(request, "recipes.html", recipes=cards(await recipes(request).list()))


async def recipe_new(request: Request) -> Response:
    user = session_user(request)
    if user is None:
        return RedirectResponse("/login", status_code=303)

    match request.method.lower():
        case "get":
            return HTMLResponse(render(request, "recipe-new.html", form={}, error=None))
        case "post":
            async with request.form() as form:
                fields = {k: str(form.get(k, "")) for k in RECIPE_FIELDS}
            try:
                await ensure_author(request, user)
                await create_recipe(author_id=user.id, repository=recipes(request), **fields)
            except InvalidRecipe as e:
                return HTMLResponse(
                    render(request, "recipe-new.html", form=fields, error=str(e)),
                    status_code=400,
                )
            return RedirectResponse("/recipes", status_code=303)
        case _:
            raise ValueError("Unsupported method.")


@aHTMLResponse
async def recipe_detail(request: Request) -> str:
    id = request.path_params["id"]
    repo = recipes(request)
    await repo.count_view(id)
    recipe = await repo.get(id)
    user = session_user(request)
    page = RecipeDetail(
        recipe,
        environment=request.app.state.templates,
        viewer_id=user.id if user else None,
    )
    return page.render(user=user)


async def recipe_edit(request: Request) -> Response:
    user = session_user(request)
    if user is None:
        return RedirectResponse("/login", status_code=303)
    id = request.path_params["id"]
    repo = recipes(request)
    recipe = await repo.get(id)
    if recipe.author_id != user.id:
        return HTMLResponse(render(request, "forbidden.html"), status_code=403)

    match request.method.lower():
        case "get":
            form = {k: getattr(recipe, k) or "" for k in RECIPE_FIELDS}
            return HTMLResponse(
                render(request, "recipe-edit.html", recipe=recipe, form=form, error=None)
            )
        case "post":
            async with request.form() as form:
                fields = {k: str(form.get(k, "")) for k in RECIPE_FIELDS}
            try:
                await edit_recipe(id, editor_id=user.id, repository=repo, **fields)
            except InvalidRecipe as e:
                return HTMLResponse(
                    render(request, "recipe-edit.html", recipe=recipe, form=fields, error=str(e)),
                    status_code=400,
                )
            return RedirectResponse(f"/recipes/{id}", status_code=303)
        case _:
            raise ValueError("Unsupported method.")


async def api_recipes(request: Request) -> Response:
    match request.method.lower():
        case "get":
            latest = await recipes(request).list()
            return JSONResponse([r.to_dict() for r in latest])
        case "post":
            # Not a public path, so the gate has already required a session.
            user: AuthUser = request.state.session.user
            try:
                body = await request.json()
            except ValueError:
                body = None
            if not isinstance(body, dict):
                return JSONResponse({"error": "Expected a JSON object"}, status_code=400)
            fields = {k: body.get(key) for k, key in API_RECIPE_FIELDS.items()}
            if not all(v is None or isinstance(v, str) for v in fields.values()):
                return JSONResponse({"error": "Recipe fields must be strings"}, status_code=400)
            try:
                await ensure_author(request, user)
                recipe = await create_recipe(
                    title=str(body.get("title") or ""),
                    author_id=user.id,
                    **fields,
                    repository=recipes(request),
                )
            except InvalidRecipe as e:
                return JSONResponse({"error": str(e)}, status_code=400)
            return JSONResponse(recipe.to_dict(), status_code=201)
        case _:
            raise ValueError("Unsupported method.")


async def profile(request: Request) -> Response:
    user = await page_client(request).get_user()
    if user is None:
        return RedirectResponse("/login", status_code=303)
    own = await recipes(request).by_author(user.id)
    member = await profiles(request).find(user.id)
    since = user.created_at or (member.created_at if member else "")
    return HTMLResponse(
        render(
            request,
            "profile.html",
            profile=member,
            initial=(user.email or "?")[:1].upper(),
            member_since=since[:10],
            stats=ProfileStats(own),
            recipes=cards(own),
        )
    )


async def profile_edit(request: Request) -> Response:
    user = await page_client(request).get_user()
    if user is None:
        return RedirectResponse("/login", status_code=303)

    match request.method.lower():
        case "get":
            member = await profiles(request).find(user.id)
            return HTMLResponse(
                render(
                    request,
                    "profile-edit.html",
                    username=member.username if member else "",
                    email=user.email or "",
                    error=None,
                )
            )
        case "post":
            async with request.form() as form:
                username = str(form.get("username", ""))
            await ensure_author(request, user)
            try:
                await update_username(user.id, username, repository=profiles(request))
            except ValueError as e:
                return HTMLResponse(
                    render(
                        request,
                        "profile-edit.html",
                        username=username,
                        email=user.email or "",
                        error=str(e),
                    ),
                    status_code=400,
                )
            return RedirectResponse("/profile", status_code=303)
        case _:
            raise ValueError("Unsupported method.")


@aHTMLResponse
async def explore(request: Request) -> str:
    conf: config.Config = request.app.state.config
    rendered_at = datetime.now().strftime("%H:%M:%S")
    try:
        users = await fetch_users(conf.directory_url, http_client=request.app.state.http)
    except (httpx.HTTPError, ValidationError) as e:
        logger.warning("Could not load user directory: %r", e)
        return render(request, "explore.html", users=None, rendered_at=rendered_at)
    return render(request, "explore.html", users=users, rendered_at=rendered_at)


def static_page(template: str) -> Callable[[Request], Awaitable[HTMLResponse]]:
    @aHTMLResponse
    async def page(request: Request) -> str:
        return render(request, template, message=request.query_params.get("message"))

    return page


async def not_found(request: Request, exc: Exception) -> HTMLResponse:
    return HTMLResponse(render(request, "not-found.html"), status_code=404)


async def forbidden(request: Request, exc: Exception) -> HTMLResponse:
    return HTMLResponse(render(request, "forbidden.html"), status_code=403)


async def auth_unavailable(request: Request, exc: Exception) -> HTMLResponse:
    logger.error("Identity provider error: %s", exc)
    return HTMLResponse(render(request, "error.html"), status_code=502)


def create_app(
    conf: config.Config | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Starlette:
    conf = config.Config() if conf is None else conf  # pyright: ignore[reportCallIssue]
    configure_logging(conf.log_level)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        await app.state.db.connect()
        await create_tables(app.state.db)
        app.state.identity_http = identity_client_factory(conf, transport=transport)
        app.state.http = httpx.AsyncClient(timeout=20, transport=transport)
        logger.info("Potluck up (%s), identity provider %s", conf.env.value, conf.supabase_url)
        yield
        await app.state.http.aclose()
        await app.state.identity_http.aclose()
        await app.state.db.disconnect()

    app = Starlette(
        debug=True if conf.env == config.Env.local else False,
        routes=[
            Route("/", homepage),
            Route("/recipes", recipe_list),
            Route("/recipes/new", recipe_new, methods=["GET", "POST"]),
            Route("/recipes/{id}", recipe_detail),
            Route("/recipes/{id}/edit", recipe_edit, methods=["GET", "POST"]),
            Route("/profile", profile),
            Route("/profile/edit", profile_edit, methods=["GET", "POST"]),
            Route("/explore", explore),
            Route("/login", static_page("login.html")),
            Route("/signup", static_page("signup.html")),
            Route("/reset-password", static_page("reset-password.html")),
            Route("/reset-password/confirm", static_page("reset-password-confirm.html")),
            Route("/auth/welcome", sync.welcome),
            Route("/api/auth/set", sync.set_session, methods=["POST"]),
            Route("/api/auth/signout", sync.sign_out, methods=["POST"]),
            Route("/api/auth/set/signout", sync.sign_out, methods=["POST"]),
            Route("/api/users/create", sync.create_user, methods=["POST"]),
            Route("/api/recipes", api_recipes, methods=["GET", "POST"]),
        ],
        middleware=[Middleware(AccessGateMiddleware)],
        exception_handlers={
            RecipeNotFound: not_found,
            NotRecipeAuthor: forbidden,
            AuthError: auth_unavailable,
        },
        lifespan=lifespan,
    )

    app.state.config = conf
    app.state.db = Database(conf.db_url)
    app.state.templates = Environment(
        loader=FileSystemLoader(conf.html_dir),
        autoescape=select_autoescape(),
    )
    return app
