"""
Command line entry point for preview environments.

`create` deploys every service from the config into the PR's namespace
and exposes it under /pr-<n>/ on the ingress host. `delete` removes the
namespace. Both report through step outputs, the job summary and, when
credentials are available, a comment on the pull request.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time

from dotenv import load_dotenv

from automation.comments import build_deleted_comment, build_ready_comment, build_summary
from automation.config_parser import load_config
from automation.constants import (
    ACTIONS,
    DEFAULT_CONFIG_PATH,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_FORMAT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_TEMPLATE_DIR,
    DEFAULT_WAIT_TIMEOUT,
    GITHUB_REPO,
    GITHUB_REPOSITORY,
    GITHUB_RUN_ID,
    GITHUB_TOKEN,
    INGRESS_HOST,
    KUBECONFIG_DATA,
    LOG_FILE,
    LOG_FORMATS,
    LOG_LEVEL,
    LOG_LEVELS,
    OUTPUT_DELETED,
    OUTPUT_NAMESPACE,
    OUTPUT_PREVIEW_URL,
    OUTPUT_SERVICE_URLS,
    PORT_FORWARD_OFFSET,
    STRIPPREFIX_MIDDLEWARE,
)
from automation.environment import (
    ingress_enabled,
    ingress_name,
    ingress_path,
    namespace_for_pr,
    namespace_labels,
    normalize_ingress_host,
    parse_pr_number,
    preview_url,
    service_urls,
    template_variables,
)
from automation.exceptions import ConfigError, EphemeralEnvError, GitHubError, ValidationError
from automation.gha import append_step_summary, github_run_url, set_output
from automation.github_integration import GithubClient
from automation.k8s_client import KubernetesClient, parse_kubeconfig
from automation.logger import get_logger, set_operation_id, setup_logging
from automation.template_renderer import resolve_template_dir

logger = get_logger(__name__)


def _pr_number_arg(value: str) -> int:
    try:
        return parse_pr_number(value)
    except ValidationError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage ephemeral preview environments")
    parser.add_argument("action", choices=ACTIONS, help="Action to perform")
    parser.add_argument("pr_number", type=_pr_number_arg, help="Pull request number")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--templates",
        default=DEFAULT_TEMPLATE_DIR,
        help=f"Path to templates directory (default: {DEFAULT_TEMPLATE_DIR})",
    )
    parser.add_argument(
        "--ingress-host",
        default=os.getenv(INGRESS_HOST),
        help=f"Public host or IP of the ingress controller (default: ${INGRESS_HOST})",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=os.getenv(LOG_LEVEL, DEFAULT_LOG_LEVEL).upper(),
        help=f"Set logging level (default: {DEFAULT_LOG_LEVEL})",
    )
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=DEFAULT_LOG_FORMAT,
        help=f"Log output format (default: {DEFAULT_LOG_FORMAT})",
    )
    parser.add_argument(
        "--skip-github",
        action="store_true",
        help="Don't post or update the PR comment",
    )
    parser.add_argument(
        "--wait-timeout",
        type=int,
        default=DEFAULT_WAIT_TIMEOUT,
        help="Seconds to wait for the namespace to terminate on delete (default: 0, don't wait)",
    )
    return parser


def _log_file_from_env() -> str | None:
    # Unset means the default file, an empty value disables file logging
    value = os.getenv(LOG_FILE)
    if value is None:
        return DEFAULT_LOG_FILE
    return value or None


def _github_client(skip_github: bool) -> GithubClient | None:
    """
    Build the optional GitHub client. Missing credentials or a failing
    login disable PR comments without failing the run.
    """
    if skip_github:
        logger.info("GitHub integration disabled by --skip-github", extra={"skip_github": True})
        return None

    token = os.getenv(GITHUB_TOKEN)
    repo_name = os.getenv(GITHUB_REPO) or os.getenv(GITHUB_REPOSITORY)

    if not (token and repo_name):
        logger.info(
            f"GitHub integration disabled, missing {GITHUB_TOKEN} or {GITHUB_REPOSITORY}",
            extra={"has_token": bool(token), "has_repo": bool(repo_name)},
        )
        return None

    try:
        return GithubClient(token=token, repo_name=repo_name)
    except Exception as e:
        logger.warning(f"GitHub integration disabled: {e}", extra={"error": str(e)})
        return None


def main(argv: list[str] | None = None) -> None:
    """
    Parse arguments, build the clients and run the requested action.

    Exits with code 1 on invalid input or a failed operation.
    """
    load_dotenv()

    args = build_parser().parse_args(argv)

    setup_logging(level=args.log_level, log_file=_log_file_from_env(), log_format=args.log_format)

    run_id = os.getenv(GITHUB_RUN_ID)
    if run_id:
        set_operation_id(run_id)
    else:
        set_operation_id()

    namespace = namespace_for_pr(args.pr_number)
    logger.info(
        f"Starting {args.action} operation",
        extra={"action": args.action, "pr_number": args.pr_number, "namespace": namespace},
    )

    ingress_host = None
    if args.action == "create":
        try:
            ingress_host = normalize_ingress_host(args.ingress_host or "")
        except ValidationError:
            logger.error(f"Ingress host not set, pass --ingress-host or set {INGRESS_HOST}")
            sys.exit(1)

    try:
        kubeconfig_data = os.getenv(KUBECONFIG_DATA)
        kubeconfig = parse_kubeconfig(kubeconfig_data) if kubeconfig_data else None
        k8s = KubernetesClient(kubeconfig=kubeconfig)
    except ConfigError as e:
        logger.critical(str(e), extra={"action": args.action, "error_type": "ConfigError"})
        sys.exit(1)
    except Exception:
        logger.critical("Kubernetes client initialization failed", extra={"action": args.action})
        sys.exit(1)

    github = _github_client(args.skip_github)

    started = time.perf_counter()

    if args.action == "create":
        success = create_environment(
            k8s,
            args.pr_number,
            args.config,
            resolve_template_dir(args.templates),
            ingress_host,
            github,
        )
    else:
        success = delete_environment(k8s, args.pr_number, github, args.wait_timeout)

    extra = {
        "action": args.action,
        "namespace": namespace,
        "duration_seconds": round(time.perf_counter() - started, 3),
    }

    if not success:
        logger.error(f"Operation {args.action} failed", extra=extra)
        sys.exit(1)

    logger.info(f"Operation {args.action} completed successfully", extra=extra)


def _deploy_service(k8s: KubernetesClient, service: dict, namespace: str, template_dir: str) -> None:
    started = time.perf_counter()

    k8s.create_deployment(
        name=service["name"],
        namespace=namespace,
        image=service["image"],
        port=service["port"],
        template_dir=template_dir,
        env_vars=service.get("env"),
    )
    k8s.create_service(
        name=service["name"],
        namespace=namespace,
        port=service["port"],
        target_port=service["port"],
        template_dir=template_dir,
    )

    logger.debug(
        f"Deployed service: {service['name']}",
        extra={
            "service": service["name"],
            "namespace": namespace,
            "duration_seconds": round(time.perf_counter() - started, 3),
        },
    )


def _expose_services(
    k8s: KubernetesClient, services: list[dict], namespace: str, template_dir: str
) -> None:
    # The middleware strips /pr-<n> before requests reach the services
    k8s.create_middleware(
        name=STRIPPREFIX_MIDDLEWARE,
        namespace=namespace,
        prefixes=[f"/{namespace}"],
        template_dir=template_dir,
    )

    for service in services:
        if not ingress_enabled(service):
            continue

        path = ingress_path(namespace, service["ingress"]["path"])
        k8s.create_ingress(
            name=ingress_name(namespace, service["name"]),
            namespace=namespace,
            path=path,
            service_name=service["name"],
            service_port=service["port"],
            middleware_name=STRIPPREFIX_MIDDLEWARE,
            template_dir=template_dir,
        )
        logger.info(
            f"Created ingress for {service['name']} at {path}",
            extra={"namespace": namespace, "service": service["name"], "path": path},
        )


def _prune_removed(k8s: KubernetesClient, services: list[dict], namespace: str) -> None:
    # Services dropped from the config, or with ingress turned off, since the last deploy
    names = {service["name"] for service in services}
    ingresses = {
        ingress_name(namespace, service["name"])
        for service in services
        if ingress_enabled(service)
    }

    pruned = k8s.prune_resources(
        namespace, {"Deployment": names, "Service": names, "Ingress": ingresses}
    )
    if pruned:
        logger.info(
            f"Removed {len(pruned)} resources no longer in the config",
            extra={"namespace": namespace, "pruned": pruned},
        )


def _log_access(services: list[dict], namespace: str, ingress_host: str, urls: dict) -> None:
    if urls:
        url = preview_url(namespace, ingress_host)
        logger.info(f"Preview environment accessible at: {url}", extra={"url": url})
    else:
        logger.info(
            "No ingress configured, environment only accessible via port-forward",
            extra={"namespace": namespace, "ingress_created": False},
        )

    logger.info("Access services directly with kubectl port-forward:")
    for service in services:
        local_port = service["port"] + PORT_FORWARD_OFFSET
        logger.info(
            f"  kubectl port-forward -n {namespace} svc/{service['name']} "
            f"{local_port}:{service['port']}"
        )


def _log_failure(error: Exception, namespace: str) -> None:
    logger.error(str(error), extra={"namespace": namespace, "error_type": type(error).__name__})
    if not isinstance(error, EphemeralEnvError):
        logger.debug("Unexpected error", exc_info=error)


def create_environment(
    k8s: KubernetesClient,
    pr_number: int,
    config_path: str,
    template_dir: str,
    ingress_host: str,
    github: GithubClient | None = None,
) -> bool:
    """
    Create or update the preview environment for a pull request.

    Re-running against an existing environment updates it in place.

    Args:
        k8s: KubernetesClient instance
        pr_number: Pull request number
        config_path: Path to the service config file
        template_dir: Path to the manifest templates
        ingress_host: Public host or IP of the ingress controller
        github: Optional client for the PR comment

    Returns:
        True if successful, False otherwise
    """
    started = time.perf_counter()
    namespace = namespace_for_pr(pr_number)

    logger.info(f"Creating environment: {namespace}", extra={"namespace": namespace})

    try:
        services = load_config(config_path, template_variables(pr_number, ingress_host))["services"]

        k8s.create_namespace(namespace, labels=namespace_labels(pr_number))
        for service in services:
            _deploy_service(k8s, service, namespace, template_dir)
        _expose_services(k8s, services, namespace, template_dir)
        _prune_removed(k8s, services, namespace)

        urls = service_urls(services, namespace, ingress_host)
        _log_access(services, namespace, ingress_host, urls)

        set_output(OUTPUT_NAMESPACE, namespace)
        set_output(OUTPUT_PREVIEW_URL, preview_url(namespace, ingress_host) if urls else "")
        set_output(OUTPUT_SERVICE_URLS, json.dumps(urls))
        append_step_summary(build_summary(namespace, urls))

        if github and urls:
            try:
                github.upsert_comment(pr_number, build_ready_comment(namespace, urls, github_run_url()))
            except GitHubError as e:
                logger.warning(
                    f"Failed to post GitHub comment: {e}",
                    extra={"pr_number": pr_number, "error": str(e)},
                )
    except Exception as e:
        _log_failure(e, namespace)
        return False

    logger.info(
        "Environment created successfully",
        extra={
            "namespace": namespace,
            "service_count": len(services),
            "total_duration_seconds": round(time.perf_counter() - started, 3),
        },
    )
    return True


def delete_environment(
    k8s: KubernetesClient,
    pr_number: int,
    github: GithubClient | None = None,
    wait_timeout: int = DEFAULT_WAIT_TIMEOUT,
) -> bool:
    """
    Delete the preview environment for a pull request.

    Deleting an environment that no longer exists counts as success.

    Args:
        k8s: KubernetesClient instance
        pr_number: Pull request number
        github: Optional client; an existing preview comment is rewritten
            to say the environment is gone
        wait_timeout: Seconds to wait for the namespace to terminate (0 = don't wait)

    Returns:
        True if successful, False otherwise
    """
    namespace = namespace_for_pr(pr_number)

    logger.info(f"Deleting environment: {namespace}", extra={"namespace": namespace})

    try:
        deleted = k8s.delete_namespace(namespace)

        if deleted and wait_timeout > 0 and not k8s.wait_for_namespace_deletion(
            namespace, timeout=wait_timeout
        ):
            logger.error(
                f"Namespace {namespace} still terminating after {wait_timeout}s. "
                f"Check for finalizers with 'kubectl get namespace {namespace} -o yaml'",
                extra={"namespace": namespace, "error_type": "KubernetesError"},
            )
            return False
    except Exception as e:
        _log_failure(e, namespace)
        return False

    logger.info(
        f"Environment deleted: {namespace} (resources may take a few seconds to terminate)",
        extra={"namespace": namespace, "deleted": deleted},
    )

    set_output(OUTPUT_NAMESPACE, namespace)
    set_output(OUTPUT_DELETED, "true" if deleted else "false")

    if github:
        try:
            comment_id = github.find_bot_comment(pr_number)
            if comment_id:
                github.update_comment(
                    pr_number, comment_id, build_deleted_comment(namespace, github_run_url())
                )
        except GitHubError as e:
            logger.warning(
                f"Failed to update GitHub comment: {e}",
                extra={"pr_number": pr_number, "error": str(e)},
            )

    return True


if __name__ == "__main__":
    main()
