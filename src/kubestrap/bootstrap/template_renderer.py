from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


class TemplateRenderer:
    """Renders the shell templates; a missing variable is an error, not ''."""

    def __init__(self, templates_dir: Optional[Path] = None):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir or TEMPLATES_DIR)),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: Optional[dict] = None) -> str:
        tmpl = self.env.get_template(template_name)
        return tmpl.render(**(context or {}))
