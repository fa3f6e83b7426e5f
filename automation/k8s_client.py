"""
Kubernetes client wrapper for preview environment management.

Every resource is rendered from a template and applied create-or-update,
so running `create` again for the same PR converges instead of failing.
"""

from __future__ import annotations

import base64
import binascii
import re
import time
from typing import Any

from kubernetes import client, config, utils
from kubernetes.client.rest import ApiException
from kubernetes.utils import FailToCreateError
from yaml import YAMLError, safe_load

from automation.constants import (
    DEPLOYMENT_TEMPLATE,
    INGRESS_TEMPLATE,
    KUBECONFIG_REQUIRED_KEYS,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    MAX_IMAGE_LENGTH,
    MAX_K8S_NAME_LENGTH,
    MAX_K8S_SUBDOMAIN_LENGTH,
    MAX_PORT,
    MIDDLEWARE_TEMPLATE,
    MIN_PORT,
    NAMESPACE_POLL_INTERVAL,
    NAMESPACE_TERMINATING,
    NAMESPACE_TERMINATING_TIMEOUT,
    SERVICE_TEMPLATE,
)
from automation.exceptions import ConfigError, KubernetesError, ValidationError
from automation.logger import get_logger
from automation.template_renderer import render_template

logger = get_logger(__name__)

# RFC 1123 label: lowercase alphanumeric + hyphens, start/end with alphanumeric
K8S_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
# RFC 1123 subdomain: dot-separated labels
K8S_SUBDOMAIN_RE = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)
IMAGE_TAG_RE = re.compile(r"^[a-zA-Z0-9_][a-zA-Z0-9._-]{0,127}$")
IMAGE_PATH_RE = re.compile(
    r"^[a-z0-9]+((\.|_|__|-+)[a-z0-9]+)*(\/[a-z0-9]+((\.|_|__|-+)[a-z0-9]+)*)*$"
)
TRAEFIK_API_GROUPS = ("traefik.io", "traefik.containo.us")


def parse_kubeconfig(content: str) -> dict:
    """
    Parse kubeconfig content supplied through a secret.

    Accepts the raw YAML file or the same file base64-encoded, which is
    how it is usually stored in the KUBECONFIG repository secret.

    Args:
        content: Raw or base64-encoded kubeconfig

    Returns:
        dict: Kubeconfig suitable for config.load_kube_config_from_dict

    Raises:
        ConfigError: If content is empty, undecodable, or not a kubeconfig
    """
    if not content or not content.strip():
        raise ConfigError("kubeconfig missing: the KUBECONFIG secret is empty or not set")

    text = content.strip()
    kubeconfig = _load_yaml_mapping(text)

    if kubeconfig is None:
        try:
            decoded = base64.b64decode("".join(text.split()), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigError("kubeconfig is neither valid YAML nor base64-encoded YAML") from e
        kubeconfig = _load_yaml_mapping(decoded)

    if kubeconfig is None:
        raise ConfigError("kubeconfig is neither valid YAML nor base64-encoded YAML")

    missing = [key for key in KUBECONFIG_REQUIRED_KEYS if key not in kubeconfig]
    if missing:
        raise ConfigError(f"kubeconfig missing required keys: {', '.join(missing)}")

    return kubeconfig


def _load_yaml_mapping(text: str) -> dict | None:
    # Base64 text parses as a plain scalar, so anything but a mapping is a miss
    try:
        loaded = safe_load(text)
    except YAMLError:
        return None
    return loaded if isinstance(loaded, dict) else None


class KubernetesClient:
    """
    Wrapper for Kubernetes API operations.
    """

    def __init__(self, kubeconfig: dict | None = None):
        """
        Initialize Kubernetes client.

        Args:
            kubeconfig: Parsed kubeconfig. When omitted, the default
                location (~/.kube/config or $KUBECONFIG) is used.
        """
        try:
            if kubeconfig is not None:
                config.load_kube_config_from_dict(kubeconfig)
            else:
                config.load_kube_config()
            self.v1 = client.CoreV1Api()
            self.apps_v1 = client.AppsV1Api()
            logger.info("Kubernetes client initialized successfully")
        except Exception as e:
            logger.critical(f"Failed to initialize Kubernetes client: {e}")
            raise

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_k8s_name(
        self, name: str, resource_type: str = "resource", subdomain: bool = False
    ) -> None:
        """
        Validate a resource name (namespace, deployment, service, ...).

        Most names are RFC 1123 labels. Ingress names only need to be
        RFC 1123 subdomains, so they may be longer and contain dots.

        Raises:
            ValidationError: If the name is empty, too long or not RFC 1123
        """
        label = resource_type.capitalize()
        max_length = MAX_K8S_SUBDOMAIN_LENGTH if subdomain else MAX_K8S_NAME_LENGTH
        pattern = K8S_SUBDOMAIN_RE if subdomain else K8S_NAME_RE

        if not name:
            raise ValidationError(f"{label} name cannot be empty")

        if len(name) > max_length:
            raise ValidationError(
                f"{label} name too long (max {max_length} chars, got {len(name)})"
            )

        if not pattern.match(name):
            raise ValidationError(
                f"Invalid {resource_type} name '{name}'. Must be lowercase letters, numbers, "
                "and hyphens only. Must start and end with alphanumeric character."
            )

    def _validate_image_name(self, image: str) -> None:
        """
        Validate a container image reference.

        Accepted shapes:
        - nginx:latest
        - ghcr.io/owner/frontend:pr-42
        - localhost:5000/app:v1 (registry port is not mistaken for a tag)

        Raises:
            ValidationError: If the reference is malformed or has no tag
        """
        if not image:
            raise ValidationError("Image name cannot be empty")

        if "{{" in image or "}}" in image:
            raise ValidationError(f"Image '{image}' contains an unsubstituted template variable")

        if ":" not in image.rsplit("/", 1)[-1]:
            raise ValidationError("Image must include a tag (e.g., 'nginx:latest')")

        repository, tag = image.rsplit(":", 1)

        if not IMAGE_TAG_RE.match(tag):
            raise ValidationError(
                "Invalid tag format. Must start with alphanumeric or underscore, "
                "followed by alphanumeric, dots, underscores, or hyphens (max 128 chars)"
            )

        separators = "dots, underscores, double underscores, or hyphens as separators"
        if "/" in repository:
            # The first component is the registry host and may carry a port
            _registry, path = repository.split("/", 1)
            if not IMAGE_PATH_RE.match(path):
                raise ValidationError(
                    f"Invalid repository name format. Must be lowercase alphanumeric with {separators}"
                )
        elif not IMAGE_PATH_RE.match(repository):
            raise ValidationError(
                f"Invalid image name format. Must be lowercase alphanumeric with {separators}"
            )

        if len(image) > MAX_IMAGE_LENGTH:
            raise ValidationError(
                f"Image reference too long ({len(image)} chars, recommended max {MAX_IMAGE_LENGTH})"
            )

    def _validate_port(self, port: int) -> None:
        if isinstance(port, bool) or not isinstance(port, int):
            raise ValidationError(f"Port must be an integer, got {type(port).__name__}")

        if not MIN_PORT <= port <= MAX_PORT:
            raise ValidationError(f"Port must be between {MIN_PORT}-{MAX_PORT}, got {port}")

    # ------------------------------------------------------------------
    # Applying manifests
    # ------------------------------------------------------------------

    def _parse_yaml_manifest(self, yaml_content: str, namespace: str) -> dict:
        """
        Parse a rendered manifest and pin it to the namespace.

        Raises:
            KubernetesError: If the YAML does not parse to a mapping
        """
        try:
            manifest = safe_load(yaml_content)
        except YAMLError as e:
            raise KubernetesError(f"Failed to parse YAML manifest: {e}") from e

        if not isinstance(manifest, dict):
            raise KubernetesError("Failed to parse YAML manifest: expected a mapping")

        manifest.setdefault("metadata", {})["namespace"] = namespace
        return manifest

    def _is_traefik_crd(self, manifest: dict) -> bool:
        group = manifest.get("apiVersion", "").split("/")[0]
        return group in TRAEFIK_API_GROUPS

    def _apply_traefik_crd(self, manifest: dict, namespace: str) -> None:
        """
        Create a Traefik custom resource, or replace it if it already exists.

        Args:
            manifest: Traefik CRD manifest
            namespace: Namespace to apply to

        Raises:
            KubernetesError: If the CRDs are missing or the API call fails
        """
        kind = manifest.get("kind", "Resource")
        name = manifest["metadata"].get("name", "unknown")
        group, _, version = manifest.get("apiVersion", "").partition("/")
        log_extra = {"kind": kind, "resource_name": name, "namespace": namespace}

        target = {
            "group": group,
            "version": version,
            "namespace": namespace,
            "plural": f"{kind.lower()}s",
        }
        custom_api = client.CustomObjectsApi()

        try:
            custom_api.create_namespaced_custom_object(body=manifest, **target)
        except ApiException as e:
            if e.status == 404:
                raise KubernetesError(
                    f"Failed to create {kind} {name}: the {group} CRDs are not "
                    "installed. Is Traefik running on the cluster?"
                ) from e
            if e.status != 409:
                raise KubernetesError(f"Failed to create {kind} {name}: {e.reason}") from e

            logger.info(f"{kind} {name} already exists, updating...", extra=log_extra)
            self._replace_custom_object(custom_api, target, name, manifest)
            logger.info(f"Updated {kind}: {name}", extra=log_extra)
            return

        logger.info(f"Created {kind}: {name}", extra=log_extra)

    def _replace_custom_object(
        self,
        custom_api: client.CustomObjectsApi,
        target: dict[str, str],
        name: str,
        manifest: dict,
    ) -> None:
        # A replace is rejected without the live resourceVersion
        try:
            current = custom_api.get_namespaced_custom_object(name=name, **target)
            manifest["metadata"]["resourceVersion"] = current["metadata"]["resourceVersion"]
            custom_api.replace_namespaced_custom_object(name=name, body=manifest, **target)
        except ApiException as e:
            raise KubernetesError(
                f"Failed to update {manifest.get('kind', 'Resource')} {name}: {e.reason}"
            ) from e

    def _apply_standard_resource(self, manifest: dict, namespace: str) -> None:
        """
        Create a built-in resource (Deployment, Service, Ingress), or replace
        it if it already exists.

        Raises:
            KubernetesError: If the API call fails for any reason but a conflict
        """
        kind = manifest.get("kind", "Resource")
        name = manifest["metadata"].get("name", "unknown")
        log_extra = {"kind": kind, "resource_name": name, "namespace": namespace}

        try:
            utils.create_from_dict(self.v1.api_client, manifest)
        except FailToCreateError as e:
            if not any(error.status == 409 for error in e.api_exceptions):
                raise KubernetesError(f"Failed to apply {kind} {name}: {e}") from e
        except ApiException as e:
            if e.status != 409:
                raise KubernetesError(f"Failed to apply {kind} {name}: {e.reason}") from e
        else:
            logger.info(f"Created {kind}: {name}", extra=log_extra)
            return

        logger.info(f"{kind} {name} already exists, updating...", extra=log_extra)
        self._update_standard_resource(manifest, namespace, kind, name)

    def _update_standard_resource(
        self, manifest: dict, namespace: str, kind: str, name: str
    ) -> None:
        """
        Replace an existing built-in resource with the rendered manifest.

        Unlike a strategic merge patch, a replace drops fields the manifest no
        longer lists, such as an env var removed from the config.

        Raises:
            KubernetesError: If the kind is unsupported or the replace fails
        """
        if kind == "Deployment":
            read = self.apps_v1.read_namespaced_deployment
            replace = self.apps_v1.replace_namespaced_deployment
        elif kind == "Service":
            read = self.v1.read_namespaced_service
            replace = self.v1.replace_namespaced_service
        elif kind == "Ingress":
            networking_v1 = client.NetworkingV1Api()
            read = networking_v1.read_namespaced_ingress
            replace = networking_v1.replace_namespaced_ingress
        else:
            raise KubernetesError(f"Update not implemented for resource kind: {kind}")

        try:
            live = read(name=name, namespace=namespace)
            manifest["metadata"]["resourceVersion"] = live.metadata.resource_version
            if kind == "Service":
                # clusterIP is allocated by the API server and immutable
                manifest.setdefault("spec", {})["clusterIP"] = live.spec.cluster_ip
            replace(name=name, namespace=namespace, body=manifest)
        except ApiException as e:
            raise KubernetesError(f"Failed to update {kind} {name}: {e.reason}") from e

        logger.info(
            f"Updated {kind}: {name}",
            extra={"kind": kind, "resource_name": name, "namespace": namespace},
        )

    def _apply_yaml(self, yaml_content: str, namespace: str) -> None:
        manifest = self._parse_yaml_manifest(yaml_content, namespace)

        if self._is_traefik_crd(manifest):
            self._apply_traefik_crd(manifest, namespace)
        else:
            self._apply_standard_resource(manifest, namespace)

    def _apply_template(self, template_name: str, data: dict[str, Any], template_dir: str) -> None:
        yaml_content = render_template(template_name, data, template_dir)
        self._apply_yaml(yaml_content, data["namespace"])

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def create_namespace(self, name: str, labels: dict[str, str] | None = None) -> bool:
        """
        Create a namespace.

        An existing Active namespace is reused. A namespace still
        Terminating from a previous delete is waited out, then recreated.

        Args:
            name: Name of the namespace to create
            labels: Optional labels for the namespace

        Returns:
            True if successful (includes case where namespace already exists)

        Raises:
            ValidationError: If name validation fails
            KubernetesError: If creation fails or the old namespace never finishes terminating
        """
        self._validate_k8s_name(name, "namespace")

        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=labels))

        try:
            self.v1.create_namespace(body)
            logger.info(f"Created namespace: {name}", extra={"namespace": name})
            return True
        except ApiException as e:
            if e.status != 409:
                raise KubernetesError(f"Failed to create namespace {name}: {e.reason}") from e

        phase = self.get_namespace_phase(name)

        if phase is None:
            # Finished terminating between the conflict and the read
            logger.info(
                f"Namespace {name} disappeared after the conflict, creating it again",
                extra={"namespace": name},
            )
        elif phase != NAMESPACE_TERMINATING:
            logger.info(f"Namespace {name} already exists", extra={"namespace": name})
            return True
        else:
            logger.warning(
                f"Namespace {name} is still terminating, waiting before recreating it",
                extra={"namespace": name, "timeout_seconds": NAMESPACE_TERMINATING_TIMEOUT},
            )

            if not self.wait_for_namespace_deletion(name, timeout=NAMESPACE_TERMINATING_TIMEOUT):
                raise KubernetesError(
                    f"Namespace {name} is stuck in {NAMESPACE_TERMINATING}. Check for finalizers "
                    f"with 'kubectl get namespace {name} -o yaml'"
                )

        try:
            self.v1.create_namespace(body)
        except ApiException as e:
            raise KubernetesError(f"Failed to create namespace {name}: {e.reason}") from e

        logger.info(f"Recreated namespace: {name}", extra={"namespace": name})
        return True

    def delete_namespace(self, name: str) -> bool:
        """
        Delete a namespace and, through cascading deletion, everything in it.

        Returns:
            True if deleted, False if it did not exist

        Raises:
            ValidationError: If name validation fails
            KubernetesError: If deletion fails for any reason but not found
        """
        self._validate_k8s_name(name, "namespace")

        try:
            self.v1.delete_namespace(name)
        except ApiException as e:
            if e.status != 404:
                raise KubernetesError(f"Failed to delete namespace {name}: {e.reason}") from e
            logger.info(f"Namespace {name} not found (already deleted)", extra={"namespace": name})
            return False

        logger.info(f"Deleted namespace: {name}", extra={"namespace": name})
        return True

    def list_namespaces(self, label_selector: str | None = None) -> list[str]:
        """
        List namespace names, optionally filtered by a label selector such
        as 'app.kubernetes.io/managed-by=ephemeral-env-action'.

        Raises:
            KubernetesError: If listing fails
        """
        try:
            if label_selector:
                namespaces = self.v1.list_namespace(label_selector=label_selector)
            else:
                namespaces = self.v1.list_namespace()
        except ApiException as e:
            raise KubernetesError(f"Failed to list namespaces: {e.reason}") from e

        names = [ns.metadata.name for ns in namespaces.items]
        logger.debug(f"Listed {len(names)} namespaces", extra={"label_selector": label_selector})
        return names

    def get_namespace_phase(self, name: str) -> str | None:
        """
        Get the phase of a namespace ('Active' or 'Terminating').

        Returns:
            The phase, or None if the namespace does not exist

        Raises:
            KubernetesError: If the lookup fails
        """
        try:
            namespace = self.v1.read_namespace(name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError(f"Failed to read namespace {name}: {e.reason}") from e

        status = namespace.status
        return status.phase if status else None

    def namespace_exists(self, name: str) -> bool:
        self._validate_k8s_name(name, "namespace")

        try:
            self.v1.read_namespace(name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise KubernetesError(f"Failed to check namespace existence: {e.reason}") from e

        return True

    def wait_for_namespace_deletion(
        self, name: str, timeout: float, interval: float = NAMESPACE_POLL_INTERVAL
    ) -> bool:
        """
        Poll until a namespace is gone.

        Args:
            name: Namespace to watch
            timeout: Maximum seconds to wait
            interval: Seconds between polls

        Returns:
            True if the namespace disappeared, False on timeout
        """
        deadline = time.monotonic() + timeout

        while self.namespace_exists(name):
            if time.monotonic() >= deadline:
                logger.warning(
                    f"Namespace {name} still exists after {timeout}s",
                    extra={"namespace": name, "timeout_seconds": timeout},
                )
                return False
            time.sleep(interval)

        logger.info(f"Namespace {name} fully terminated", extra={"namespace": name})
        return True

    # ------------------------------------------------------------------
    # Workloads and routing
    # ------------------------------------------------------------------

    def create_deployment(
        self,
        name: str,
        namespace: str,
        image: str,
        port: int,
        template_dir: str,
        env_vars: dict[str, str] | None = None,
    ) -> None:
        """
        Create or update a single-replica deployment.

        Args:
            name: Container and deployment name; pods are labelled app=<name>
            namespace: Target namespace
            image: Image reference including a tag
            port: Container port
            template_dir: Directory containing templates
            env_vars: Optional environment variables for the container

        Raises:
            ValidationError: If input validation fails
            TemplateError: If template rendering fails
            KubernetesError: If the API call fails
        """
        logger.info(
            f"Creating deployment: {name}",
            extra={"deployment": name, "namespace": namespace, "image": image, "port": port},
        )

        self._validate_k8s_name(name, "deployment")
        self._validate_k8s_name(namespace, "namespace")
        self._validate_image_name(image)
        self._validate_port(port)

        data = {
            "name": name,
            "namespace": namespace,
            "image": image,
            "port": port,
            "env_vars": env_vars,
        }
        self._apply_template(DEPLOYMENT_TEMPLATE, data, template_dir)

    def create_service(
        self, name: str, namespace: str, port: int, target_port: int, template_dir: str
    ) -> None:
        """
        Create or update a ClusterIP service selecting pods labelled app=<name>.

        Raises:
            ValidationError: If input validation fails
            TemplateError: If template rendering fails
            KubernetesError: If the API call fails
        """
        logger.info(
            f"Creating service: {name}",
            extra={"service": name, "namespace": namespace, "port": port},
        )

        self._validate_k8s_name(name, "service")
        self._validate_k8s_name(namespace, "namespace")
        self._validate_port(port)
        self._validate_port(target_port)

        data = {"name": name, "namespace": namespace, "port": port, "target_port": target_port}
        self._apply_template(SERVICE_TEMPLATE, data, template_dir)

    def create_middleware(
        self, name: str, namespace: str, prefixes: list[str], template_dir: str
    ) -> None:
        """
        Create or update a Traefik StripPrefix middleware.

        Args:
            name: Middleware name, referenced by ingress annotations
            namespace: Target namespace
            prefixes: Path prefixes to strip (e.g. ['/pr-42'])
            template_dir: Directory containing templates

        Raises:
            ValidationError: If input validation fails
            TemplateError: If template rendering fails
            KubernetesError: If the API call fails or Traefik is not installed
        """
        logger.info(
            f"Creating middleware: {name}",
            extra={"middleware": name, "namespace": namespace, "prefixes": prefixes},
        )

        self._validate_k8s_name(name, "middleware")
        self._validate_k8s_name(namespace, "namespace")

        if not prefixes:
            raise ValidationError("Middleware needs at least one prefix to strip")

        data = {"name": name, "namespace": namespace, "prefixes": prefixes}
        self._apply_template(MIDDLEWARE_TEMPLATE, data, template_dir)

    def create_ingress(
        self,
        name: str,
        namespace: str,
        path: str,
        service_name: str,
        service_port: int,
        middleware_name: str,
        template_dir: str,
    ) -> None:
        """
        Create or update a Traefik-routed ingress for one service.

        Args:
            name: Ingress name
            namespace: Target namespace
            path: Public path prefix (e.g. '/pr-42/api')
            service_name: Backend service name
            service_port: Backend service port
            middleware_name: Middleware in the same namespace to attach
            template_dir: Directory containing templates

        Raises:
            ValidationError: If input validation fails
            TemplateError: If template rendering fails
            KubernetesError: If the API call fails
        """
        logger.info(
            f"Creating ingress: {name}",
            extra={"ingress": name, "namespace": namespace, "path": path, "service": service_name},
        )

        self._validate_k8s_name(name, "ingress", subdomain=True)
        self._validate_k8s_name(namespace, "namespace")
        self._validate_k8s_name(service_name, "service")
        self._validate_port(service_port)

        if not path.startswith("/"):
            raise ValidationError(f"Ingress path must start with '/', got '{path}'")

        data = {
            "name": name,
            "namespace": namespace,
            "path": path,
            "service_name": service_name,
            "service_port": service_port,
            "middleware_name": middleware_name,
        }
        self._apply_template(INGRESS_TEMPLATE, data, template_dir)

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    def prune_resources(self, namespace: str, keep: dict[str, set[str]]) -> list[str]:
        """
        Delete managed resources that are no longer part of the config.

        Only Deployments, Services and Ingresses labelled as managed by this
        action are considered, so objects created by hand are left alone.

        Args:
            namespace: Environment namespace
            keep: Names to keep per kind ('Deployment', 'Service', 'Ingress')

        Returns:
            list[str]: Deleted resources as 'Kind/name'

        Raises:
            KubernetesError: If listing or deleting fails
        """
        self._validate_k8s_name(namespace, "namespace")

        networking_v1 = client.NetworkingV1Api()
        apis = {
            "Deployment": (
                self.apps_v1.list_namespaced_deployment,
                self.apps_v1.delete_namespaced_deployment,
            ),
            "Service": (self.v1.list_namespaced_service, self.v1.delete_namespaced_service),
            "Ingress": (
                networking_v1.list_namespaced_ingress,
                networking_v1.delete_namespaced_ingress,
            ),
        }
        selector = f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"
        pruned = []

        for kind, (list_resources, delete_resource) in apis.items():
            try:
                items = list_resources(namespace=namespace, label_selector=selector).items
            except ApiException as e:
                raise KubernetesError(f"Failed to list {kind}s in {namespace}: {e.reason}") from e

            for item in items:
                name = item.metadata.name
                if name in keep.get(kind, set()):
                    continue

                try:
                    delete_resource(name=name, namespace=namespace)
                except ApiException as e:
                    # Already gone
                    if e.status != 404:
                        raise KubernetesError(f"Failed to delete {kind} {name}: {e.reason}") from e

                logger.info(
                    f"Pruned {kind}: {name}",
                    extra={"kind": kind, "resource_name": name, "namespace": namespace},
                )
                pruned.append(f"{kind}/{name}")

        return pruned
