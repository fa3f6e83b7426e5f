"""
GitHub Action entry point.

action.yml maps each input to an INPUT_* variable and runs
`python -m automation.action`. Inputs are validated here, secrets are
exported to the environment, and the rest is handed to the CLI.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass

from automation.constants import (
    ACTIONS,
    DEFAULT_CONFIG_PATH,
    DEFAULT_LOG_LEVEL,
    DEFAULT_TEMPLATE_DIR,
    DEFAULT_WAIT_TIMEOUT,
    GITHUB_TOKEN,
    INGRESS_HOST,
    KUBECONFIG_DATA,
    LOG_FILE,
    LOG_FORMATS,
    LOG_LEVELS,
)
from automation.environment import normalize_ingress_host, parse_pr_number
from automation.exceptions import ValidationError
from automation.gha import get_boolean_input, get_input
from automation.logger import get_logger, setup_logging
from automation.main import main as cli_main

logger = get_logger(__name__)

# Annotations render warnings and errors on the workflow run page
DEFAULT_ACTION_LOG_FORMAT = "github"


@dataclass
class ActionInputs:
    """Validated inputs of the preview environment action."""

    action: str
    pr_number: int
    kubeconfig: str
    ingress_host: str
    github_token: str = ""
    config_path: str = DEFAULT_CONFIG_PATH
    template_dir: str = DEFAULT_TEMPLATE_DIR
    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_ACTION_LOG_FORMAT
    skip_github: bool = False
    wait_timeout: int = DEFAULT_WAIT_TIMEOUT

    def to_argv(self) -> list[str]:
        """
        Build CLI arguments for automation.main.

        The kubeconfig and token never appear here; see export_secrets().
        """
        argv = [
            self.action,
            str(self.pr_number),
            "--config",
            self.config_path,
            "--templates",
            self.template_dir,
            "--ingress-host",
            self.ingress_host,
            "--log-level",
            self.log_level,
            "--log-format",
            self.log_format,
            "--wait-timeout",
            str(self.wait_timeout),
        ]
        if self.skip_github:
            argv.append("--skip-github")
        return argv

    def export_secrets(self, environ: dict[str, str] | None = None) -> None:
        e = environ if environ is not None else os.environ
        e[KUBECONFIG_DATA] = self.kubeconfig
        e[INGRESS_HOST] = self.ingress_host
        if self.github_token:
            e[GITHUB_TOKEN] = self.github_token


def _choice(name: str, value: str, choices: list[str]) -> str:
    if value not in choices:
        raise ValidationError(f"Input '{name}' must be one of {', '.join(choices)}, got '{value}'")
    return value


def read_action_inputs(env: Mapping[str, str] | None = None) -> ActionInputs:
    """
    Read and validate the action inputs.

    Args:
        env: Environment to read from (default: os.environ)

    Returns:
        ActionInputs

    Raises:
        ValidationError: If an input is missing or invalid
    """
    action = _choice("action", get_input("action", env, required=True).lower(), ACTIONS)
    pr_number = parse_pr_number(get_input("pr-number", env, required=True))
    kubeconfig = get_input("kubeconfig", env, required=True)
    ingress_host = normalize_ingress_host(get_input("ingress-host", env, required=True))

    log_level = _choice(
        "log-level", get_input("log-level", env, default=DEFAULT_LOG_LEVEL).upper(), LOG_LEVELS
    )
    log_format = _choice(
        "log-format",
        get_input("log-format", env, default=DEFAULT_ACTION_LOG_FORMAT).lower(),
        LOG_FORMATS,
    )

    wait_timeout_raw = get_input("wait-timeout", env, default=str(DEFAULT_WAIT_TIMEOUT))
    if not (wait_timeout_raw.isascii() and wait_timeout_raw.isdigit()):
        raise ValidationError(
            f"Input 'wait-timeout' must be a non-negative integer, got '{wait_timeout_raw}'"
        )

    return ActionInputs(
        action=action,
        pr_number=pr_number,
        kubeconfig=kubeconfig,
        ingress_host=ingress_host,
        github_token=get_input("github-token", env),
        config_path=get_input("config-path", env, default=DEFAULT_CONFIG_PATH),
        template_dir=get_input("template-dir", env, default=DEFAULT_TEMPLATE_DIR),
        log_level=log_level,
        log_format=log_format,
        skip_github=get_boolean_input("skip-github", env),
        wait_timeout=int(wait_timeout_raw),
    )


def main() -> None:
    """Entry point used by action.yml."""
    try:
        inputs = read_action_inputs()
    except ValidationError as e:
        setup_logging(level=DEFAULT_LOG_LEVEL, log_format=DEFAULT_ACTION_LOG_FORMAT)
        logger.error(str(e), extra={"error_type": "ValidationError"})
        sys.exit(1)

    inputs.export_secrets()

    # The runner workspace belongs to the caller, keep log files out of it
    os.environ.setdefault(LOG_FILE, "")

    cli_main(inputs.to_argv())


if __name__ == "__main__":
    main()
