from potluck.domain.models import Recipe


class RecipeCard:
    """What a recipe looks like in a list."""

    def __init__(self, recipe: Recipe) -> None:
        self.recipe = recipe

    @property
    def stars(self) -> list[bool]:
        return self.recipe.stars

    @property
    def rating(self) -> str:
        return f"{self.recipe.rating:.1f}"

    @property
    def author(self) -> str:
        return self.recipe.author_username or "unknown"

    @property
    def cook_time(self) -> str:
        return self.recipe.cook_time or "—"


def cards(recipes: tuple[Recipe, ...]) -> list[RecipeCard]:
    return [RecipeCard(r) for r in recipes]
