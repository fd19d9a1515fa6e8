"""Renders discovered services into proxy configuration text."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from proxy_reconfigurer.services.models import Service
from proxy_reconfigurer.utils.diagnostics import RenderError

TEMPLATES_ROOT = Path(__file__).resolve().parent.parent / "templates"
DEFAULT_TEMPLATE = "nginx.conf.j2"


class ConfigRenderer:
    """Pure function object: ordered services in, configuration text out."""

    def __init__(self, template_path: Path | None = None) -> None:
        if template_path is None:
            root, name = TEMPLATES_ROOT, DEFAULT_TEMPLATE
        else:
            root, name = template_path.parent, template_path.name
        self._environment = Environment(
            loader=FileSystemLoader(str(root)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._template_name = name

    def __call__(self, services: Sequence[Service]) -> str:
        try:
            template = self._environment.get_template(self._template_name)
            return template.render(services=list(services))
        except Exception as exc:
            # Besides TemplateError, filters and expressions in custom templates can raise anything.
            raise RenderError(
                "TemplateRenderFailed",
                f"Rendering {self._template_name} failed with {type(exc).__name__}; the previous file stays.",
                detail=str(exc),
            ) from exc


__all__ = ["ConfigRenderer", "TEMPLATES_ROOT", "DEFAULT_TEMPLATE"]
