"""
Custom exceptions for the ephemeral environment action.

Every error the action raises on purpose derives from EphemeralEnvError,
so the CLI can tell platform failures apart from programming errors.
"""


class EphemeralEnvError(Exception):
    """
    Base exception for all ephemeral environment errors.

    Example:
        try:
            k8s.create_namespace("pr-42")
        except EphemeralEnvError as e:
            logger.error(f"Preview environment error: {e}")
    """

    pass


class ConfigError(EphemeralEnvError):
    """
    Configuration-related errors.

    Raised for problems with the service config file or the kubeconfig:
    - File not found or empty
    - Invalid YAML syntax
    - Missing required fields or wrong field types
    - Unknown template variables
    """

    pass


class ValidationError(EphemeralEnvError):
    """
    Validation errors for user input or resource specifications.

    Raised when validation fails for:
    - Action inputs (pr-number, action, booleans)
    - Kubernetes resource names
    - Port numbers
    - Docker image names
    """

    pass


class TemplateError(EphemeralEnvError):
    """
    Template rendering errors.

    Raised when a Jinja2 manifest template is missing, malformed,
    or references a variable that was not supplied.
    """

    pass


class GitHubError(EphemeralEnvError):
    """
    GitHub API interaction errors.

    Raised when searching, posting, or editing PR comments fails.
    """

    pass


class KubernetesError(EphemeralEnvError):
    """
    Kubernetes API errors.

    Raised when an API call fails, or when a namespace does not reach
    the expected state in time.
    """

    pass
