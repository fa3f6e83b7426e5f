"""
Jinja2 template renderer for Kubernetes manifests.

Renders YAML templates for deployments, services, and Traefik routing,
and substitutes template variables into the service config file.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)

from automation.constants import DEFAULT_TEMPLATE_DIR
from automation.exceptions import TemplateError
from automation.logger import get_logger

logger = get_logger(__name__)

BUNDLED_TEMPLATE_DIR = Path(__file__).parent / "templates"


def resolve_template_dir(template_dir: str) -> str:
    """
    Resolve the directory manifests are rendered from.

    Inside a workflow the working directory is the caller's repository,
    which normally has no automation/templates/. The default then falls
    back to the templates shipped with this package. Explicit paths are
    returned untouched so a typo surfaces as a TemplateError.

    Args:
        template_dir: Directory requested by the caller

    Returns:
        str: Directory to load templates from
    """
    if Path(template_dir).is_dir():
        return template_dir

    if template_dir == DEFAULT_TEMPLATE_DIR:
        logger.debug(
            f"{template_dir} not found, using bundled templates",
            extra={"template_dir": str(BUNDLED_TEMPLATE_DIR)},
        )
        return str(BUNDLED_TEMPLATE_DIR)

    return template_dir


def _environment(template_dir: str | None = None) -> Environment:
    # StrictUndefined turns a missing variable into an error instead of ""
    if template_dir is None:
        return Environment(undefined=StrictUndefined, keep_trailing_newline=True)
    return Environment(loader=FileSystemLoader(template_dir), undefined=StrictUndefined)


def render_template(
    template_name: str, data: dict[str, Any], template_dir: str = DEFAULT_TEMPLATE_DIR
) -> str:
    """
    Render a manifest template.

    Args:
        template_name: Name of template file (e.g., 'deployment.yaml.j2')
        data: Values for the template
        template_dir: Directory containing templates

    Returns:
        str: Rendered YAML content

    Raises:
        TemplateError: If the template is missing, broken, or needs a value not in data
    """
    started = time.perf_counter()

    try:
        rendered = _environment(template_dir).get_template(template_name).render(data)
    except TemplateNotFound as e:
        raise TemplateError(f"Template not found: {template_name} in {template_dir}") from e
    except TemplateSyntaxError as e:
        raise TemplateError(
            f"Invalid syntax in template {template_name} at line {e.lineno}: {e.message}"
        ) from e
    except UndefinedError as e:
        raise TemplateError(f"Missing required variable in template {template_name}: {e}") from e
    except Exception as e:
        raise TemplateError(f"Failed to render template {template_name}: {e}") from e

    logger.debug(
        f"Rendered template: {template_name}",
        extra={
            "template_dir": template_dir,
            "size_bytes": len(rendered),
            "duration_seconds": round(time.perf_counter() - started, 3),
        },
    )
    return rendered


def render_string(source: str, data: dict[str, Any], source_name: str = "<string>") -> str:
    """
    Render an inline template, such as the service config file with its
    {{PR_NUMBER}} style placeholders.

    Raises:
        TemplateError: On syntax errors, undefined variables or any other render failure
    """
    try:
        return _environment().from_string(source).render(data)
    except TemplateSyntaxError as e:
        raise TemplateError(
            f"Invalid template syntax in {source_name} at line {e.lineno}: {e.message}"
        ) from e
    except UndefinedError as e:
        raise TemplateError(f"Unknown template variable in {source_name}: {e}") from e
    except Exception as e:
        # e.g. {{ PR_NUMBER + 1 }} with PR_NUMBER passed as a string
        raise TemplateError(f"Failed to render {source_name}: {e}") from e
