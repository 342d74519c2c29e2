import math

import markdown2  # pyright: ignore[reportMissingTypeStubs]


MAX_STARS = 5


class Profile:
    def __init__(
        self,
        *,
        id: str,
        email: str,
        username: str,
        created_at: str,
    ) -> None:
        self.id = id
        self.email = email
        self.username = username
        self.created_at = created_at

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, username={self.username})>"

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "created_at": self.created_at,
        }


class Recipe:
    def __init__(
        self,
        *,
        id: str,
        title: str,
        author_id: str,
        created_at: str,
        description: str | None = None,
        image_url: str | None = None,
        video_url: str | None = None,
        cook_time: str | None = None,
        rating: float = 0.0,
        views: int = 0,
        author_username: str | None = None,
    ) -> None:
        self.id = id
        self.title = title
        self.author_id = author_id
        self.created_at = created_at
        self.description = description
        self.image_url = image_url
        self.video_url = video_url
        self.cook_time = cook_time
        self.rating = rating
        self.views = views
        self.author_username = author_username

    def __repr__(self) -> str:
        return f"<Recipe(id={self.id}, title={self.title})>"

    @property
    def html(self) -> str:
        return markdown2.markdown(  # pyright: ignore[reportUnknownVariableType, reportUnknownMemberType]
            self.description or "", extras=["fences", "tables"]
        )

    @property
    def stars(self) -> list[bool]:
        return stars(self.rating)

    def to_dict(self) -> dict[str, str | float | int | None]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
            "videoUrl": self.video_url,
            "cookTime": self.cook_time,
            "rating": self.rating,
            "views": self.views,
            "authorId": self.author_id,
            "authorUsername": self.author_username,
            "createdAt": self.created_at,
        }


def stars(rating: float) -> list[bool]:
    """Filled flags for a five star display. Halves round up."""
    filled = math.floor(rating + 0.5)
    return [i <= filled for i in range(1, MAX_STARS + 1)]
