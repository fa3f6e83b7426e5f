"""
Constants for the ephemeral environment action.

Magic strings, limits and defaults shared across modules.
"""

import logging

# ============================================================================
# Namespace Configuration
# ============================================================================

# Prefix for ephemeral environment namespaces (e.g. 'pr-123')
NAMESPACE_PREFIX = "pr-"

# Label marking namespaces owned by this action
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "ephemeral-env-action"

# Label carrying the pull request number
PR_NUMBER_LABEL = "ephemeral-env/pr-number"

# Namespace phase reported while finalizers are still running
NAMESPACE_TERMINATING = "Terminating"

# Seconds to wait for a terminating namespace before giving up
NAMESPACE_TERMINATING_TIMEOUT = 60

# Seconds between namespace existence polls
NAMESPACE_POLL_INTERVAL = 2

# ============================================================================
# Configuration Parsing
# ============================================================================

# Required fields for service configuration
REQUIRED_SERVICE_FIELDS = ["name", "image", "port"]

# Ingress path used when a service enables ingress without a path
DEFAULT_INGRESS_PATH = "/"

# Placeholders available inside the config file
TEMPLATE_VAR_PR_NUMBER = "PR_NUMBER"
TEMPLATE_VAR_NAMESPACE = "NAMESPACE"
TEMPLATE_VAR_INGRESS_HOST = "INGRESS_HOST"

# Top-level keys a kubeconfig must define
KUBECONFIG_REQUIRED_KEYS = ["clusters", "contexts", "users"]

# ============================================================================
# Jinja2 Template Files
# ============================================================================

# Looked up in the template directory, see template_renderer.resolve_template_dir
DEPLOYMENT_TEMPLATE = "deployment.yaml.j2"
SERVICE_TEMPLATE = "service.yaml.j2"
MIDDLEWARE_TEMPLATE = "middleware.yaml.j2"
INGRESS_TEMPLATE = "ingress.yaml.j2"

# ============================================================================
# Kubernetes Validation Limits
# ============================================================================

# RFC 1123 label limit
MAX_K8S_NAME_LENGTH = 63

# RFC 1123 subdomain limit, used for Ingress names
MAX_K8S_SUBDOMAIN_LENGTH = 253

# Service names are RFC 1035 labels: they must start with a letter
SERVICE_NAME_PATTERN = r"^[a-z]([-a-z0-9]*[a-z0-9])?$"

MIN_PORT = 1
MAX_PORT = 65535

# Recommended maximum image length for Docker image references
MAX_IMAGE_LENGTH = 255

# ============================================================================
# Traefik Configuration
# ============================================================================

# Name of the StripPrefix middleware for path routing
STRIPPREFIX_MIDDLEWARE = "stripprefix"

# ============================================================================
# GitHub Configuration
# ============================================================================

# Hidden marker identifying comments owned by this action
COMMENT_MARKER = "<!-- ephemeral-env-preview -->"

# Header of the comment posted once the environment is up
PREVIEW_READY_MARKER = "🚀 **Preview Environment Ready!**"

# Header of the comment once the environment is torn down
PREVIEW_DELETED_MARKER = "🧹 **Preview Environment Deleted**"

# Account that comments when the workflow uses the built-in GITHUB_TOKEN
GITHUB_ACTIONS_BOT_LOGIN = "github-actions[bot]"

# PyGithub NamedUser.type of app and workflow-token accounts
BOT_USER_TYPE = "Bot"

# ============================================================================
# Action Inputs
# ============================================================================

# Supported values for the 'action' input
ACTIONS = ["create", "delete"]

# Supported logging levels
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Supported log output formats
LOG_FORMATS = ["text", "structured", "json", "github"]

# Values accepted for boolean inputs (YAML 1.2 core schema)
TRUE_VALUES = ["true", "True", "TRUE"]
FALSE_VALUES = ["false", "False", "FALSE"]

# Prefix the runner uses for action inputs
INPUT_ENV_PREFIX = "INPUT_"

# ============================================================================
# Action Outputs
# ============================================================================

OUTPUT_NAMESPACE = "namespace"
OUTPUT_PREVIEW_URL = "preview-url"
OUTPUT_SERVICE_URLS = "service-urls"
OUTPUT_DELETED = "deleted"

# ============================================================================
# Default Paths and Variables
# ============================================================================

# Default path for ephemeral environment configuration file
DEFAULT_CONFIG_PATH = ".ephemeral-config.yaml"

# Default directory for Jinja2 templates
DEFAULT_TEMPLATE_DIR = "automation/templates/"

# Default log file path
DEFAULT_LOG_FILE = "logs/ephemeral-env.log"

# Default log level
DEFAULT_LOG_LEVEL = "INFO"

# Default log output format
DEFAULT_LOG_FORMAT = "text"

# Default seconds to wait for namespace deletion (0 = do not wait)
DEFAULT_WAIT_TIMEOUT = 0

# ============================================================================
# Port Configuration
# ============================================================================

# Offset added to service ports for kubectl port-forward suggestions
PORT_FORWARD_OFFSET = 1000

# ============================================================================
# Logger Configuration
# ============================================================================

# Attributes every LogRecord has; anything else came in through extra={}
RESERVED_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}

# Fields to exclude from extra_fields extraction
EXCLUDED_EXTRA_FIELDS = {"operation_id", "extra_fields"}

JSON_DATEFMT = "%Y-%m-%dT%H:%M:%S"

CONSOLE_FMT = "[%(operation_id)s] | %(levelname)-8s | %(message)s"
FILE_FMT = "%(asctime)s | [%(operation_id)s] | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"

STRUCT_CONSOLE_FMT = CONSOLE_FMT
STRUCT_FILE_FMT = FILE_FMT
STRUCT_DATEFMT = "%Y-%m-%d %H:%M:%S"

TEXT_CONSOLE_FMT = CONSOLE_FMT
TEXT_FILE_FMT = FILE_FMT
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Maximum size of a log file before rotation
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB

# Number of rotated log files to keep
LOG_BACKUP_COUNT = 5

# ============================================================================
# Environment Variable Names
# ============================================================================

GITHUB_TOKEN = "GITHUB_TOKEN"

# owner/repo; GITHUB_REPO overrides the runner-provided GITHUB_REPOSITORY
GITHUB_REPO = "GITHUB_REPO"
GITHUB_REPOSITORY = "GITHUB_REPOSITORY"

# Set by the runner
GITHUB_RUN_ID = "GITHUB_RUN_ID"
GITHUB_SERVER_URL = "GITHUB_SERVER_URL"
GITHUB_OUTPUT = "GITHUB_OUTPUT"
GITHUB_STEP_SUMMARY = "GITHUB_STEP_SUMMARY"

LOG_LEVEL = "LOG_LEVEL"
LOG_FILE = "LOG_FILE"

# Public host or IP of the ingress controller
INGRESS_HOST = "INGRESS_HOST"

# Kubeconfig content (raw YAML or base64)
KUBECONFIG_DATA = "KUBECONFIG_DATA"
