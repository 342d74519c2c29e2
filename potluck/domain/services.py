import logging

from potluck.db import ProfilesRepository, RecipesRepository
from potluck.domain.models import Profile, Recipe


logger = logging.getLogger(__name__)


class InvalidRecipe(ValueError):
    pass


class NotRecipeAuthor(Exception):
    pass


def default_username(id: str, email: str | None, username: str | None = None) -> str:
    """Explicit name, else the email's local part, else something from the id."""
    if username and username.strip():
        return username.strip()
    local = (email or "").split("@", 1)[0].strip()
    if local:
        return local
    return f"user_{id[:8]}"


async def sync_profile(
    *,
    id: str,
    email: str | None,
    username: str | None = None,
    repository: ProfilesRepository,
) -> Profile:
    explicit = username.strip() if username and username.strip() else None
    return await repository.upsert(
        id=id,
        email=email or "",
        username=default_username(id, email, username),
        explicit_username=explicit,
    )


async def update_username(
    id: str,
    username: str,
    *,
    repository: ProfilesRepository,
) -> Profile:
    username = username.strip()
    if not username:
        raise ValueError("Username is required.")
    return await repository.set_username(id, username)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


async def create_recipe(
    *,
    title: str,
    author_id: str,
    description: str | None = None,
    image_url: str | None = None,
    video_url: str | None = None,
    cook_time: str | None = None,
    repository: RecipesRepository,
) -> Recipe:
    title = (title or "").strip()
    if not title:
        raise InvalidRecipe("Title is required.")
    recipe = await repository.create(
        title=title,
        author_id=author_id,
        description=_clean(description),
        image_url=_clean(image_url),
        video_url=_clean(video_url),
        cook_time=_clean(cook_time),
    )
    logger.info("Recipe %s created by %s", recipe.id, author_id)
    return recipe


async def edit_recipe(
    id: str,
    *,
    editor_id: str,
    title: str,
    description: str | None = None,
    image_url: str | None = None,
    video_url: str | None = None,
    cook_time: str | None = None,
    repository: RecipesRepository,
) -> Recipe:
    recipe = await repository.get(id)
    if recipe.author_id != editor_id:
        raise NotRecipeAuthor(f"{editor_id} does not own {id}")
    title = (title or "").strip()
    if not title:
        raise InvalidRecipe("Title is required.")
    return await repository.update(
        id,
        title=title,
        description=_clean(description),
        image_url=_clean(image_url),
        video_url=_clean(video_url),
        cook_time=_clean(cook_time),
    )


class ProfileStats:
    def __init__(self, recipes: tuple[Recipe, ...]) -> None:
        self.recipes = len(recipes)
        self.views = sum(r.views for r in recipes)
        self.rating = sum(r.rating for r in recipes) / len(recipes) if recipes else 0.0

    @property
    def rating_display(self) -> str:
        return f"{self.rating:.1f}"
