"""
Ephemeral Environment Action

Per-pull-request preview environments on Kubernetes, driven from GitHub Actions.
"""

__version__ = "0.2.0"

from automation.exceptions import (
    ConfigError,
    EphemeralEnvError,
    GitHubError,
    KubernetesError,
    TemplateError,
    ValidationError,
)
from automation.github_integration import GithubClient
from automation.k8s_client import KubernetesClient, parse_kubeconfig

__all__ = [
    "KubernetesClient",
    "GithubClient",
    "parse_kubeconfig",
    "EphemeralEnvError",
    "ConfigError",
    "ValidationError",
    "TemplateError",
    "GitHubError",
    "KubernetesError",
]
