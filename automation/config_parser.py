"""
Configuration file parser for the ephemeral environment action.

Loads and validates the YAML file that lists the services deployed
into each preview environment. Template variables such as
{{PR_NUMBER}} are substituted before the YAML is parsed.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from yaml import YAMLError, safe_load

from automation.constants import (
    DEFAULT_INGRESS_PATH,
    MAX_K8S_NAME_LENGTH,
    MAX_PORT,
    MIN_PORT,
    REQUIRED_SERVICE_FIELDS,
    SERVICE_NAME_PATTERN,
)
from automation.exceptions import ConfigError, TemplateError
from automation.logger import get_logger
from automation.template_renderer import render_string

logger = get_logger(__name__)

SERVICE_NAME_RE = re.compile(SERVICE_NAME_PATTERN)


def load_config(config_path: str, variables: dict[str, str] | None = None) -> dict[str, Any]:
    """
    Load and parse YAML configuration file.

    Args:
        config_path: Path to the .ephemeral-config.yaml file
        variables: Optional template variables (PR_NUMBER, NAMESPACE, INGRESS_HOST)

    Returns:
        dict: Parsed and normalized configuration

    Raises:
        ConfigError: If file not found, invalid YAML, unknown template
            variable, or invalid service definitions
    """
    path = Path(config_path)

    if not path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    logger.debug(f"Loading config from {config_path}")

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Could not read config file {config_path}: {e}") from e

    if variables is not None:
        try:
            text = render_string(text, variables, source_name=config_path)
        except TemplateError as e:
            raise ConfigError(str(e)) from e

    try:
        config = safe_load(text)
    except YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in config file: {e}") from e

    if not config:
        raise ConfigError(f"Config file is empty: {config_path}")

    if not isinstance(config, dict):
        raise ConfigError(f"Config must be a mapping, got {type(config).__name__}")

    if "services" not in config:
        raise ConfigError("Config missing required field: 'services'")

    if not isinstance(config["services"], list):
        raise ConfigError("Config 'services' must be a list")

    if len(config["services"]) == 0:
        raise ConfigError("Config 'services' list is empty")

    for i, service in enumerate(config["services"]):
        _validate_service(service, i)

    _check_duplicates(config["services"])

    logger.info(
        "Successfully loaded config",
        extra={"config_path": config_path, "service_count": len(config["services"])},
    )

    return config


def _validate_service(service: dict, index: int) -> None:
    """
    Validate a single service configuration, normalizing it in place.

    Args:
        service: Service configuration dict
        index: Index of service in services list

    Raises:
        ConfigError: If service is missing required fields or has wrong types
    """
    if not isinstance(service, dict):
        raise ConfigError(
            f"Service at index {index} must be a dictionary, got {type(service).__name__}"
        )

    for field in REQUIRED_SERVICE_FIELDS:
        if field not in service:
            service_name = service.get("name", f"service at index {index}")
            raise ConfigError(f"Service '{service_name}' missing required field: '{field}'")

    if not isinstance(service["name"], str):
        raise ConfigError(f"Service 'name' must be a string, got {type(service['name']).__name__}")

    name = service["name"]

    # Checked here so a bad name fails before the namespace is touched
    if len(name) > MAX_K8S_NAME_LENGTH:
        raise ConfigError(
            f"Service name '{name}' too long (max {MAX_K8S_NAME_LENGTH} chars, got {len(name)})"
        )
    if not SERVICE_NAME_RE.match(name):
        raise ConfigError(
            f"Invalid service name '{name}'. Must be lowercase alphanumeric or '-', "
            "start with a letter and end with an alphanumeric character"
        )

    if not isinstance(service["image"], str):
        raise ConfigError(
            f"Service '{name}' 'image' must be a string, got {type(service['image']).__name__}"
        )

    # bool is a subclass of int
    if isinstance(service["port"], bool) or not isinstance(service["port"], int):
        raise ConfigError(
            f"Service '{name}' 'port' must be an integer, got {type(service['port']).__name__}"
        )
    if not MIN_PORT <= service["port"] <= MAX_PORT:
        raise ConfigError(
            f"Service '{name}' 'port' must be between {MIN_PORT} and {MAX_PORT}, "
            f"got {service['port']}"
        )

    if "ingress" in service:
        _validate_ingress(service, name)

    if "env" in service:
        service["env"] = _normalize_env(service["env"], name)


def _validate_ingress(service: dict, name: str) -> None:
    ingress = service["ingress"]

    if ingress is None:
        service["ingress"] = {}
        return

    if not isinstance(ingress, dict):
        raise ConfigError(
            f"Service '{name}' 'ingress' must be a dictionary, got {type(ingress).__name__}"
        )

    enabled = ingress.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ConfigError(
            f"Service '{name}' 'ingress.enabled' must be true or false, got {enabled!r}"
        )

    if not enabled:
        return

    path = ingress.setdefault("path", DEFAULT_INGRESS_PATH)
    if not isinstance(path, str) or not path.startswith("/"):
        raise ConfigError(f"Service '{name}' 'ingress.path' must start with '/', got {path!r}")


def _normalize_env(env: Any, name: str) -> dict[str, str] | None:
    """
    Convert env values to the strings Kubernetes expects.

    YAML turns 'true' and '5432' into bool and int; container env
    values must be strings, so they are converted back.
    """
    if env is None:
        return None

    if not isinstance(env, dict):
        raise ConfigError(f"Service '{name}' 'env' must be a dictionary, got {type(env).__name__}")

    normalized = {}
    for key, value in env.items():
        if isinstance(value, (dict, list)):
            raise ConfigError(
                f"Service '{name}' env var '{key}' must be a scalar, got {type(value).__name__}"
            )
        if value is None:
            normalized[str(key)] = ""
        elif isinstance(value, bool):
            normalized[str(key)] = "true" if value else "false"
        else:
            normalized[str(key)] = str(value)

    return normalized


def _check_duplicates(services: list[dict]) -> None:
    """
    Reject duplicate service names and clashing ingress paths.

    Raises:
        ConfigError: On the first duplicate found
    """
    seen_names = set()
    seen_paths = {}

    for service in services:
        name = service["name"]
        if name in seen_names:
            raise ConfigError(f"Duplicate service name: '{name}'")
        seen_names.add(name)

        ingress = service.get("ingress") or {}
        if not ingress.get("enabled", False):
            continue

        path = ingress["path"]
        if path in seen_paths:
            raise ConfigError(
                f"Services '{seen_paths[path]}' and '{name}' share ingress path '{path}'"
            )
        seen_paths[path] = name
