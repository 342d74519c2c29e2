from datetime import datetime, timezone
from uuid import uuid4

from databases import Database
from databases.interfaces import Record

from potluck.domain.models import Profile, Recipe


CREATE_PROFILES_TABLE = """
CREATE TABLE IF NOT EXISTS profiles (
    id VARCHAR(64) PRIMARY KEY,
    email VARCHAR(320) NOT NULL,
    username VARCHAR(64) NOT NULL,
    created_at VARCHAR(40) NOT NULL
)
"""


CREATE_RECIPES_TABLE = """
CREATE TABLE IF NOT EXISTS recipes (
    id VARCHAR(64) PRIMARY KEY,
    title VARCHAR(256) NOT NULL,
    description TEXT,
    image_url VARCHAR(2048),
    video_url VARCHAR(2048),
    cook_time VARCHAR(64),
    rating REAL NOT NULL DEFAULT 0,
    views INTEGER NOT NULL DEFAULT 0,
    author_id VARCHAR(64) NOT NULL REFERENCES profiles (id),
    created_at VARCHAR(40) NOT NULL
)
"""


# Single statement so the database settles concurrent sign-ins for one user.
UPSERT_PROFILE = """
INSERT INTO profiles (id, email, username, created_at)
VALUES (:id, :email, :username, :created_at)
ON CONFLICT (id) DO UPDATE SET
    email = COALESCE(NULLIF(excluded.email, ''), profiles.email),
    username = COALESCE(:explicit_username, profiles.username)
"""


GET_PROFILE = "SELECT * FROM profiles WHERE id = :id"


UPDATE_USERNAME = "UPDATE profiles SET username = :username WHERE id = :id"


CREATE_RECIPE = """
INSERT INTO recipes
    (id, title, description, image_url, video_url, cook_time, author_id, created_at)
VALUES
    (:id, :title, :description, :image_url, :video_url, :cook_time, :author_id, :created_at)
"""


UPDATE_RECIPE = """
UPDATE recipes SET
    title = :title,
    description = :description,
    image_url = :image_url,
    video_url = :video_url,
    cook_time = :cook_time
WHERE id = :id
"""


SELECT_RECIPES = """
SELECT recipes.*, profiles.username AS author_username
FROM recipes LEFT JOIN profiles ON profiles.id = recipes.author_id
"""


GET_RECIPE = SELECT_RECIPES + " WHERE recipes.id = :id"


LIST_RECIPES = SELECT_RECIPES + " ORDER BY recipes.created_at DESC"


LIST_RECIPES_BY_AUTHOR = (
    SELECT_RECIPES + " WHERE recipes.author_id = :author_id ORDER BY recipes.created_at DESC"
)


COUNT_VIEW = "UPDATE recipes SET views = views + 1 WHERE id = :id"


class RecipeNotFound(Exception):
    pass


class ProfileNotFound(Exception):
    pass


async def create_tables(db: Database) -> None:
    await db.execute(query=CREATE_PROFILES_TABLE)  # pyright: ignore[reportUnknownMemberType]
    await db.execute(query=CREATE_RECIPES_TABLE)  # pyright: ignore[reportUnknownMemberType]


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _profile(r: Record) -> Profile:
    return Profile(
        id=r["id"],
        email=r["email"],
        username=r["username"],
        created_at=r["created_at"],
    )


def _recipe(r: Record) -> Recipe:
    return Recipe(
        id=r["id"],
        title=r["title"],
        description=r["description"],
        image_url=r["image_url"],
        video_url=r["video_url"],
        cook_time=r["cook_time"],
        rating=float(r["rating"]),
        views=int(r["views"]),
        author_id=r["author_id"],
        author_username=r["author_username"],
        created_at=r["created_at"],
    )


class ProfilesRepository:
    """Profiles repository."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def upsert(
        self,
        *,
        id: str,
        email: str,
        username: str,
        explicit_username: str | None = None,
    ) -> Profile:
        """Insert, or on an existing id refresh the email.

        The stored username is only replaced by an `explicit_username`.
        """
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPSERT_PROFILE,
            values={
                "id": id,
                "email": email,
                "username": username,
                "explicit_username": explicit_username,
                "created_at": now(),
            },
        )
        return await self.get(id)

    async def get(self, id: str) -> Profile:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_PROFILE, values={"id": id}
        )
        if result is None:
            raise ProfileNotFound(f"{id}")
        return _profile(result)

    async def find(self, id: str) -> Profile | None:
        try:
            return await self.get(id)
        except ProfileNotFound:
            return None

    async def set_username(self, id: str, username: str) -> Profile:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPDATE_USERNAME, values={"id": id, "username": username}
        )
        return await self.get(id)


class RecipesRepository:
    """Recipes repository."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        *,
        title: str,
        author_id: str,
        description: str | None = None,
        image_url: str | None = None,
        video_url: str | None = None,
        cook_time: str | None = None,
    ) -> Recipe:
        id = uuid4().hex
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            CREATE_RECIPE,
            values={
                "id": id,
                "title": title,
                "description": description,
                "image_url": image_url,
                "video_url": video_url,
                "cook_time": cook_time,
                "author_id": author_id,
                "created_at": now(),
            },
        )
        return await self.get(id)

    async def update(
        self,
        id: str,
        *,
        title: str,
        description: str | None = None,
        image_url: str | None = None,
        video_url: str | None = None,
        cook_time: str | None = None,
    ) -> Recipe:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPDATE_RECIPE,
            values={
                "id": id,
                "title": title,
                "description": description,
                "image_url": image_url,
                "video_url": video_url,
                "cook_time": cook_time,
            },
        )
        return await self.get(id)

    async def get(self, id: str) -> Recipe:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_RECIPE, values={"id": id}
        )
        if result is None:
            raise RecipeNotFound(f"{id}")
        return _recipe(result)

    async def count_view(self, id: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            COUNT_VIEW, values={"id": id}
        )

    async def list(self) -> tuple[Recipe, ...]:
        result = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_RECIPES
        )
        return tuple(_recipe(r) for r in result)

    async def by_author(self, author_id: str) -> tuple[Recipe, ...]:
        result = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_RECIPES_BY_AUTHOR, values={"author_id": author_id}
        )
        return tuple(_recipe(r) for r in result)
