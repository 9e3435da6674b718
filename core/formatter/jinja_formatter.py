from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from core.contracts.formatter import Formatter
from core.contracts.models import ReportContext
from utils.errors import FormatterError


class Jinja2Formatter(Formatter):
    """Renders the PR-level review report from a Markdown template."""

    def __init__(
        self,
        template_dir: Optional[str] = None,
        template_name: str = "review.md.j2",
    ):
        if template_dir is None:
            # Default template directory relative to this file
            template_dir = str(Path(__file__).parent / "templates")

        self.template_dir = template_dir
        self.template_name = template_name
        try:
            self.env = Environment(
                loader=FileSystemLoader(self.template_dir),
                trim_blocks=True,
                lstrip_blocks=True,
                undefined=StrictUndefined,
            )
        except Exception as e:
            raise FormatterError(f"Failed to initialize Jinja2 environment: {e}") from e
        self.env.filters["location"] = _location

    def format(self, ctx: ReportContext) -> str:
        try:
            template = self.env.get_template(self.template_name)
            return template.render(ctx=ctx)
        except Exception as e:
            raise FormatterError(f"Failed to render template {self.template_name}: {e}") from e


def _location(located) -> str:
    """`path:line`, or just `path` for issues without a line."""
    if located.issue.line:
        return f"{located.filename}:{located.issue.line}"
    return located.filename
