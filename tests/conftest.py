"""
Shared pytest fixtures for all test files.
"""

import logging
from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def template_dir():
    """Path to template fixtures directory."""
    return str(FIXTURES_DIR / "template_renderer")


@pytest.fixture
def config_fixture():
    """Return the path of a config_parser fixture by file name."""

    def _path(name):
        return str(FIXTURES_DIR / "config_parser" / name)

    return _path


@pytest.fixture(autouse=True)
def isolated_actions_env(monkeypatch):
    """Keep runner variables from the host out of every test."""
    for name in [
        "GITHUB_OUTPUT",
        "GITHUB_STEP_SUMMARY",
        "GITHUB_SERVER_URL",
        "GITHUB_REPOSITORY",
        "GITHUB_REPO",
        "GITHUB_RUN_ID",
        "GITHUB_TOKEN",
        "INGRESS_HOST",
        "KUBECONFIG_DATA",
        "LOG_LEVEL",
        "LOG_FILE",
    ]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def reset_logging():
    """Restore the root logger after tests that call setup_logging."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)
