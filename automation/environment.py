"""
Naming and routing rules for preview environments.

A pull request maps to exactly one namespace, 'pr-<number>', and every
ingress-enabled service is reachable under http://<host>/pr-<number><path>.
"""

from __future__ import annotations

from typing import Any

from automation.constants import (
    DEFAULT_INGRESS_PATH,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    NAMESPACE_PREFIX,
    PR_NUMBER_LABEL,
    TEMPLATE_VAR_INGRESS_HOST,
    TEMPLATE_VAR_NAMESPACE,
    TEMPLATE_VAR_PR_NUMBER,
)
from automation.exceptions import ValidationError


def parse_pr_number(value: str | int) -> int:
    """
    Parse a pull request number from user input.

    Accepts '123' and '#123'.

    Args:
        value: Raw PR number

    Returns:
        int: Positive PR number

    Raises:
        ValidationError: If the value is not a positive integer
    """
    text = str(value).strip().lstrip("#")

    # isdigit() alone admits Unicode digits such as "²" or Arabic-Indic numerals
    if not (text.isascii() and text.isdigit()):
        raise ValidationError(f"PR number must be a positive integer, got '{value}'")

    pr_number = int(text)
    if pr_number < 1:
        raise ValidationError(f"PR number must be a positive integer, got '{value}'")

    return pr_number


def namespace_for_pr(pr_number: int) -> str:
    return f"{NAMESPACE_PREFIX}{pr_number}"


def namespace_labels(pr_number: int) -> dict[str, str]:
    return {MANAGED_BY_LABEL: MANAGED_BY_VALUE, PR_NUMBER_LABEL: str(pr_number)}


def normalize_ingress_host(host: str) -> str:
    """
    Strip scheme and trailing slashes from an ingress host.

    'http://1.2.3.4/' and '1.2.3.4' both become '1.2.3.4'.

    Raises:
        ValidationError: If nothing is left after stripping
    """
    normalized = (host or "").strip()
    for scheme in ("http://", "https://"):
        if normalized.lower().startswith(scheme):
            normalized = normalized[len(scheme) :]
    normalized = normalized.rstrip("/")

    if not normalized:
        raise ValidationError("Ingress host cannot be empty")

    return normalized


def template_variables(pr_number: int, ingress_host: str) -> dict[str, str]:
    """Variables substituted into the service config file."""
    return {
        TEMPLATE_VAR_PR_NUMBER: str(pr_number),
        TEMPLATE_VAR_NAMESPACE: namespace_for_pr(pr_number),
        TEMPLATE_VAR_INGRESS_HOST: ingress_host,
    }


def ingress_enabled(service: dict[str, Any]) -> bool:
    return bool(service.get("ingress", {}).get("enabled", False))


def ingress_path(namespace: str, service_path: str = DEFAULT_INGRESS_PATH) -> str:
    """
    Build the public path for a service.

    Examples:
        ingress_path('pr-7', '/')    -> '/pr-7/'
        ingress_path('pr-7', '/api') -> '/pr-7/api'
    """
    return f"/{namespace}{service_path}"


def ingress_name(namespace: str, service_name: str) -> str:
    return f"{namespace}-{service_name}-ingress"


def preview_url(namespace: str, ingress_host: str) -> str:
    return f"http://{ingress_host}{ingress_path(namespace)}"


def service_urls(
    services: list[dict[str, Any]], namespace: str, ingress_host: str
) -> dict[str, str]:
    """
    Map each ingress-enabled service to its public URL.

    Args:
        services: Validated service configs
        namespace: Preview namespace
        ingress_host: Normalized ingress host

    Returns:
        dict: Service name to URL, in config order
    """
    urls = {}
    for service in services:
        if not ingress_enabled(service):
            continue
        path = service["ingress"].get("path", DEFAULT_INGRESS_PATH)
        urls[service["name"]] = f"http://{ingress_host}{ingress_path(namespace, path)}"
    return urls
