import logging
from typing import Any
import liquid
from liquid.exceptions import LiquidError
from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment

DIALECTS = ("liquid", "jinja")

logger = logging.getLogger(__name__)


class TemplateRenderError(Exception):
    pass


class TemplateRenderer:
    """Renders plugin markup in one of the supported template dialects."""

    def __init__(self) -> None:
        self._liquid = liquid.Environment()
        self._jinja = SandboxedEnvironment(autoescape=True)

    def render(self, template: str, context: dict[str, Any], dialect: str = "liquid") -> str:
        dialect = (dialect or "liquid").strip().lower()
        if dialect not in DIALECTS:
            raise TemplateRenderError(f"Unsupported markup language: {dialect}")
        try:
            if dialect == "liquid":
                return self._liquid.from_string(template or "").render(**context)
            return self._jinja.from_string(template or "").render(**context)
        except (LiquidError, TemplateError) as exc:
            raise TemplateRenderError(f"{dialect} template error: {exc}") from exc
        except Exception as exc:
            raise TemplateRenderError(f"{dialect} template failed: {exc}") from exc

    def render_string(self, template: str | None, variables: dict[str, Any] | None) -> str:
        """Resolve Liquid variables in short configuration strings such as polling URLs."""
        if not template:
            return ""
        if "{{" not in template and "{%" not in template:
            return template
        return self.render(template, variables or {}, "liquid")


default_renderer = TemplateRenderer()
