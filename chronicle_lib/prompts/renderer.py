"""Prompt template management for Chronicle.

Prompts live as Jinja2 files in ``templates/`` next to this module and are
rendered by name. The hard-constraint blocks (deceased characters, plot
reminders, volume boundaries) are built in code and passed in as finished
text.
"""

from pathlib import Path
from typing import Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template, TemplateNotFound

from chronicle_lib.core.exceptions import ConfigurationError
from chronicle_lib.core.logger import get_logger

logger = get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


class PromptTemplateManager:
    """Loads, caches and renders the prompt templates."""

    def __init__(self, template_dir: Optional[Path] = None):
        self.template_dir = Path(template_dir or TEMPLATE_DIR)
        self.jinja_env = self._setup_jinja_environment()
        self._template_cache: Dict[str, Template] = {}

    def _setup_jinja_environment(self) -> Environment:
        env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
            undefined=StrictUndefined,
        )
        env.filters["join_cn"] = lambda items: "、".join(str(i) for i in items or [])
        return env

    def _get_jinja_template(self, template_name: str) -> Template:
        if template_name not in self._template_cache:
            try:
                self._template_cache[template_name] = self.jinja_env.get_template(
                    f"{template_name}.jinja2"
                )
            except TemplateNotFound as e:
                logger.error(f"Template '{template_name}' not found in {self.template_dir}")
                raise ConfigurationError(f"Prompt template '{template_name}' not found") from e
        return self._template_cache[template_name]

    def render(self, template_name: str, **kwargs) -> str:
        """Render a template with the provided variables.

        Args:
            template_name: Name of the template file (without .jinja2 extension)
            **kwargs: Variables to pass to the template

        Returns:
            Rendered prompt text
        """
        template = self._get_jinja_template(template_name)
        rendered = template.render(**kwargs).strip()
        logger.debug(f"Rendered template '{template_name}' ({len(rendered)} chars)")
        return rendered

    def list_available_templates(self) -> List[str]:
        return sorted(path.stem for path in self.template_dir.glob("*.jinja2"))


_template_manager: Optional[PromptTemplateManager] = None


def get_template_manager() -> PromptTemplateManager:
    """Get or create the shared template manager."""
    global _template_manager
    if _template_manager is None:
        _template_manager = PromptTemplateManager()
    return _template_manager


def render_prompt(template_name: str, **kwargs) -> str:
    """Render a prompt template by name.

    Args:
        template_name: Name of the template
        **kwargs: Variables for the template

    Returns:
        Rendered prompt string
    """
    return get_template_manager().render(template_name, **kwargs)
