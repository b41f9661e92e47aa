"""Configuration template loading and placeholder substitution."""
import re
from pathlib import Path
from typing import Dict, List, Optional, Set

from panelo.core.errors import TemplateRenderError

PLACEHOLDER = re.compile(r'\$\{([A-Z][A-Z0-9_]*)\}')


class TemplateLoader:
    """Loads bundled configuration templates and renders them.

    Templates use ``${KEY}`` placeholders replaced by exact string
    substitution; no expressions or escaping rules apply, so a template's
    output is fully determined by its text and the context.
    """

    def __init__(self, templates_dir: Optional[Path] = None):
        """Initialize template loader.

        Args:
            templates_dir: Path to templates directory. Defaults to panelo/templates/
        """
        if templates_dir is None:
            # Loader is in panelo/core/, templates are in panelo/templates/
            templates_dir = Path(__file__).parent.parent / "templates"
        self.templates_dir = Path(templates_dir)

    def path_for(self, template_name: str) -> Path:
        return self.templates_dir / template_name

    def load(self, template_name: str) -> str:
        """Load raw template text.

        Raises:
            TemplateRenderError: If the template doesn't exist
        """
        template_path = self.path_for(template_name)
        if not template_path.is_file():
            raise TemplateRenderError(
                f"Template '{template_name}' not found at {template_path}"
            )
        return template_path.read_text()

    def render(self, template_name: str, context: Dict[str, str]) -> str:
        """Load a template and substitute its placeholders."""
        return self.render_text(self.load(template_name), context, template_name)

    @staticmethod
    def render_text(text: str, context: Dict[str, str], template_name: str = "<inline>") -> str:
        """Replace every ``${KEY}`` with ``context[KEY]``.

        Raises:
            TemplateRenderError: If a placeholder has no value in the context
        """
        rendered = text
        for key, value in context.items():
            rendered = rendered.replace(f"${{{key}}}", str(value))

        unresolved = sorted(set(PLACEHOLDER.findall(rendered)))
        if unresolved:
            raise TemplateRenderError(
                f"Template '{template_name}' has unresolved placeholders: {', '.join(unresolved)}"
            )
        return rendered

    def placeholders(self, template_name: str) -> Set[str]:
        """Names of all placeholders a template expects."""
        return set(PLACEHOLDER.findall(self.load(template_name)))

    def list_templates(self) -> List[str]:
        """List all available template files."""
        if not self.templates_dir.exists():
            return []
        return sorted(p.name for p in self.templates_dir.iterdir() if p.is_file())
