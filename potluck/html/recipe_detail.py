from jinja2 import Environment
from markupsafe import Markup

from potluck.domain.models import Recipe


class RecipeDetail:
    def __init__(
        self,
        recipe: Recipe,
        *,
        environment: Environment,
        viewer_id: str | None = None,
        template_name: str = "recipe-detail.html",
    ) -> None:
        self.recipe = recipe
        self.env = environment
        self.viewer_id = viewer_id
        self.name = template_name

    @property
    def title(self) -> str:
        return self.recipe.title

    @property
    def content(self) -> str:
        return Markup(self.recipe.html)

    @property
    def editable(self) -> bool:
        return self.viewer_id is not None and self.viewer_id == self.recipe.author_id

    def render(self, **context: object) -> str:
        return self.env.get_template(self.name).render(page=self, recipe=self.recipe, **context)
