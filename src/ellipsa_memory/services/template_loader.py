"""Template loading service for Jinja prompt templates."""

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template

from ..logging import get_logger

logger = get_logger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"


class TemplateLoader:
    """Loads and renders the prompt templates shipped with the package."""

    def __init__(self, template_dir: str | Path | None = None):
        """Initialize the template loader.

        Args:
            template_dir: Directory containing template files.
                         Defaults to the package's prompts/ directory.
        """
        self.template_dir = Path(template_dir) if template_dir else PROMPTS_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )
        logger.debug("Template loader initialized", template_dir=str(self.template_dir))

    def load_template(self, template_name: str) -> Template:
        """Load a template by name.

        Raises:
            jinja2.TemplateNotFound: If the template file doesn't exist
        """
        return self.env.get_template(template_name)

    def render_template(self, template_name: str, context: dict[str, Any]) -> str:
        """Load and render a template with the given variables."""
        rendered = self.load_template(template_name).render(**context)
        logger.debug(
            "Rendered template",
            template=template_name,
            context_keys=sorted(context.keys()),
            length=len(rendered),
        )
        return rendered
