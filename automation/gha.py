"""
GitHub Actions runtime helpers.

Reads action inputs from INPUT_* variables and writes step outputs and
the job summary through the files the runner points at.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Mapping

from automation.constants import (
    FALSE_VALUES,
    GITHUB_OUTPUT,
    GITHUB_REPOSITORY,
    GITHUB_RUN_ID,
    GITHUB_SERVER_URL,
    GITHUB_STEP_SUMMARY,
    INPUT_ENV_PREFIX,
    TRUE_VALUES,
)
from automation.exceptions import ValidationError
from automation.logger import get_logger

logger = get_logger(__name__)


def _input_keys(name: str) -> list[str]:
    # Docker actions keep hyphens ('INPUT_PR-NUMBER'); action.yml maps them to underscores
    upper = name.replace(" ", "_").upper()
    return [INPUT_ENV_PREFIX + upper.replace("-", "_"), INPUT_ENV_PREFIX + upper]


def get_input(
    name: str,
    env: Mapping[str, str] | None = None,
    default: str = "",
    required: bool = False,
) -> str:
    """
    Read an action input.

    Args:
        name: Input name as declared in action.yml (e.g. 'pr-number')
        env: Environment to read from (default: os.environ)
        default: Value used when the input is unset or blank
        required: Raise if the input is unset or blank

    Returns:
        str: Input value with surrounding whitespace removed

    Raises:
        ValidationError: If a required input is missing
    """
    e = env if env is not None else os.environ

    value = ""
    for key in _input_keys(name):
        value = e.get(key, "").strip()
        if value:
            break

    if not value and required:
        raise ValidationError(f"Input required and not supplied: {name}")

    return value or default


def get_boolean_input(
    name: str, env: Mapping[str, str] | None = None, default: bool = False
) -> bool:
    """
    Read a boolean action input.

    Accepts the YAML 1.2 core schema spellings: true, True, TRUE,
    false, False, FALSE.

    Raises:
        ValidationError: If the value is anything else
    """
    value = get_input(name, env)

    if not value:
        return default
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False

    raise ValidationError(
        f"Input does not meet YAML 1.2 \"Core Schema\" specification: {name}. "
        "Support boolean input list: `true | True | TRUE | false | False | FALSE`"
    )


def set_output(name: str, value: str, env: Mapping[str, str] | None = None) -> bool:
    """
    Write a step output to $GITHUB_OUTPUT.

    Multi-line values use the heredoc form with a random delimiter.

    Returns:
        True if written, False when not running inside Actions
    """
    e = env if env is not None else os.environ
    output_file = e.get(GITHUB_OUTPUT)

    if not output_file:
        logger.debug(f"{GITHUB_OUTPUT} not set, skipping output '{name}'")
        return False

    value = str(value)
    if "\n" in value:
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        entry = f"{name}<<{delimiter}\n{value}\n{delimiter}\n"
    else:
        entry = f"{name}={value}\n"

    with open(output_file, "a", encoding="utf-8") as file:
        file.write(entry)

    logger.debug(f"Set output {name}", extra={"output": name})
    return True


def append_step_summary(markdown: str, env: Mapping[str, str] | None = None) -> bool:
    """
    Append markdown to the job summary.

    Returns:
        True if written, False when not running inside Actions
    """
    e = env if env is not None else os.environ
    summary_file = e.get(GITHUB_STEP_SUMMARY)

    if not summary_file:
        return False

    with open(summary_file, "a", encoding="utf-8") as file:
        file.write(markdown)

    return True


def github_run_url(env: Mapping[str, str] | None = None) -> str | None:
    """
    Build a clickable GitHub Actions run URL from environment variables.

    Returns None when not running on GitHub Actions or when required
    variables are missing.
    """
    e = env if env is not None else os.environ
    server_url = e.get(GITHUB_SERVER_URL)
    repo = e.get(GITHUB_REPOSITORY)
    run_id = e.get(GITHUB_RUN_ID)
    if not server_url or not repo or not run_id:
        return None
    return f"{server_url}/{repo}/actions/runs/{run_id}"
