from typing import Any

from jinja2 import Environment
from markupsafe import Markup

from marketplace.models import Dish


class DishDetail:
    def __init__(
        self,
        dish: Dish,
        *,
        premium: dict[str, Any],
        environment: Environment,
        template_name: str = "dish-detail.html",
    ) -> None:
        self.dish = dish
        self.premium = premium
        self.env = environment
        self.name = template_name

    @property
    def title(self) -> str:
        return self.dish.title

    @property
    def locked(self) -> bool:
        """Premium dishes hide their tips from viewers without access."""
        return not self.premium.get("canView", True)

    @property
    def tips(self) -> str:
        return Markup(self.dish.tips_html)

    def render(self, **context: Any) -> str:
        return self.env.get_template(self.name).render(dish=self, **context)
