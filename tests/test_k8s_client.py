"""
Tests for k8s_client.py

Includes kubeconfig parsing, validation tests and mocked operation tests.
"""

import base64
import itertools
from unittest.mock import Mock, patch

import pytest
import yaml
from kubernetes.client.rest import ApiException
from kubernetes.utils import FailToCreateError

from automation.constants import STRIPPREFIX_MIDDLEWARE
from automation.exceptions import ConfigError, KubernetesError, TemplateError, ValidationError
from automation.k8s_client import KubernetesClient, parse_kubeconfig

KUBECONFIG = {
    "apiVersion": "v1",
    "kind": "Config",
    "clusters": [{"name": "k3s", "cluster": {"server": "https://10.0.0.1:6443"}}],
    "contexts": [{"name": "k3s", "context": {"cluster": "k3s", "user": "admin"}}],
    "current-context": "k3s",
    "users": [{"name": "admin", "user": {"token": "abc"}}],
}


def _namespace(phase):
    namespace = Mock()
    namespace.status.phase = phase
    return namespace


@pytest.fixture
def mock_k8s_client(monkeypatch):
    """Create a KubernetesClient with mocked Kubernetes connection."""
    monkeypatch.setattr("automation.k8s_client.config.load_kube_config", Mock())

    mock_v1 = Mock()
    mock_apps_v1 = Mock()

    monkeypatch.setattr("automation.k8s_client.client.CoreV1Api", Mock(return_value=mock_v1))
    monkeypatch.setattr("automation.k8s_client.client.AppsV1Api", Mock(return_value=mock_apps_v1))

    return KubernetesClient()


@pytest.fixture
def no_sleep():
    """Fake clock: every monotonic() call advances ten seconds, sleep is a no-op."""
    clock = itertools.count(0, 10)
    with patch("automation.k8s_client.time.monotonic", side_effect=clock):
        with patch("automation.k8s_client.time.sleep") as mock_sleep:
            yield mock_sleep


# ============================================================================
# KUBECONFIG TESTS
# ============================================================================


def test_parse_kubeconfig_raw_yaml():
    """Test that a plain kubeconfig file is accepted."""
    result = parse_kubeconfig(yaml.safe_dump(KUBECONFIG))

    assert result["current-context"] == "k3s"


def test_parse_kubeconfig_base64():
    """Test that a base64-encoded kubeconfig is decoded."""
    encoded = base64.b64encode(yaml.safe_dump(KUBECONFIG).encode()).decode()

    result = parse_kubeconfig(encoded)

    assert result["clusters"][0]["cluster"]["server"] == "https://10.0.0.1:6443"


def test_parse_kubeconfig_base64_wrapped_lines():
    """Test that `base64` output wrapped at 76 columns is accepted."""
    encoded = base64.encodebytes(yaml.safe_dump(KUBECONFIG).encode()).decode()

    assert "\n" in encoded.strip()
    assert parse_kubeconfig(encoded)["users"][0]["name"] == "admin"


@pytest.mark.parametrize("content", ["", "   \n", None])
def test_parse_kubeconfig_empty(content):
    """Test that an empty secret is reported as missing."""
    with pytest.raises(ConfigError, match="kubeconfig missing"):
        parse_kubeconfig(content)


def test_parse_kubeconfig_garbage():
    """Test that content that is neither YAML mapping nor base64 is rejected."""
    with pytest.raises(ConfigError, match="neither valid YAML nor base64"):
        parse_kubeconfig("not a kubeconfig!")


def test_parse_kubeconfig_missing_keys():
    """Test that a mapping without clusters or users is rejected."""
    partial = {"apiVersion": "v1", "clusters": []}

    with pytest.raises(ConfigError, match="missing required keys: contexts, users"):
        parse_kubeconfig(yaml.safe_dump(partial))


def test_client_loads_kubeconfig_dict(monkeypatch):
    """Test that a parsed kubeconfig is loaded instead of ~/.kube/config."""
    load_dict = Mock()
    load_default = Mock()
    monkeypatch.setattr("automation.k8s_client.config.load_kube_config_from_dict", load_dict)
    monkeypatch.setattr("automation.k8s_client.config.load_kube_config", load_default)
    monkeypatch.setattr("automation.k8s_client.client.CoreV1Api", Mock())
    monkeypatch.setattr("automation.k8s_client.client.AppsV1Api", Mock())

    KubernetesClient(kubeconfig=KUBECONFIG)

    load_dict.assert_called_once_with(KUBECONFIG)
    load_default.assert_not_called()


def test_client_init_failure_propagates(monkeypatch):
    """Test that connection setup errors are raised to the caller."""
    monkeypatch.setattr(
        "automation.k8s_client.config.load_kube_config",
        Mock(side_effect=RuntimeError("no config")),
    )

    with pytest.raises(RuntimeError, match="no config"):
        KubernetesClient()


# ============================================================================
# VALIDATION TESTS
# ============================================================================


@pytest.mark.parametrize("name", ["my-app", "pr-42", "a", "a" * 63])
def test_validate_k8s_name_valid(mock_k8s_client, name):
    mock_k8s_client._validate_k8s_name(name, "deployment")


@pytest.mark.parametrize(
    "name, message",
    [
        ("", "cannot be empty"),
        ("a" * 64, "64"),
        ("My-app", "Invalid deployment name"),
        ("-app", "Invalid deployment name"),
        ("app_1", "Invalid deployment name"),
    ],
)
def test_validate_k8s_name_invalid(mock_k8s_client, name, message):
    """Test validation rejects malformed Kubernetes names."""
    with pytest.raises(ValidationError, match=message):
        mock_k8s_client._validate_k8s_name(name, "deployment")


@pytest.mark.parametrize("name", ["pr-42-" + "a" * 63 + "-ingress", "web.pr-42", "a" * 253])
def test_validate_k8s_name_subdomain_valid(mock_k8s_client, name):
    mock_k8s_client._validate_k8s_name(name, "ingress", subdomain=True)


@pytest.mark.parametrize(
    "name, message",
    [
        ("a" * 254, "max 253 chars, got 254"),
        ("web..pr", "Invalid ingress name"),
        (".web", "Invalid ingress name"),
    ],
)
def test_validate_k8s_name_subdomain_invalid(mock_k8s_client, name, message):
    with pytest.raises(ValidationError, match=message):
        mock_k8s_client._validate_k8s_name(name, "ingress", subdomain=True)


@pytest.mark.parametrize("port", [1, 80, 65535])
def test_validate_port_valid(mock_k8s_client, port):
    mock_k8s_client._validate_port(port)


@pytest.mark.parametrize(
    "port, message",
    [(65536, "65536"), (0, "got 0"), (-1, "-1"), ("80", "must be an integer"), (True, "bool")],
)
def test_validate_port_invalid(mock_k8s_client, port, message):
    """Test validation rejects out-of-range and non-integer ports."""
    with pytest.raises(ValidationError, match=message):
        mock_k8s_client._validate_port(port)


@pytest.mark.parametrize(
    "image",
    [
        "nginx:latest",
        "myregistry.com/team/backend:latest",
        "ghcr.io/owner/frontend:pr-42",
        "localhost:5000/app:v1.2",
        "postgres:16",
    ],
)
def test_validate_image_name_valid(mock_k8s_client, image):
    mock_k8s_client._validate_image_name(image)


@pytest.mark.parametrize(
    "image, message",
    [
        ("", "cannot be empty"),
        ("nginx", "must include a tag"),
        ("localhost:5000/app", "must include a tag"),
        ("myuser/frontend:pr-{{PR_NUMBER}}", "unsubstituted template variable"),
        ("nginx:@invalid!", "Invalid tag format"),
        ("Myregistry.com/@team/backend:latest", "Invalid repository name format"),
        ("Nginx:latest", "Invalid image name format"),
        ("a" * 250 + ":latest", "Image reference"),
    ],
)
def test_validate_image_name_invalid(mock_k8s_client, image, message):
    """Test validation rejects malformed image references."""
    with pytest.raises(ValidationError, match=message):
        mock_k8s_client._validate_image_name(image)


# ============================================================================
# NAMESPACE OPERATIONS TESTS
# ============================================================================


def test_create_namespace_with_labels(mock_k8s_client):
    """Test that labels end up on the namespace body."""
    labels = {"app.kubernetes.io/managed-by": "ephemeral-env-action"}

    result = mock_k8s_client.create_namespace("pr-42", labels=labels)

    assert result is True
    body = mock_k8s_client.v1.create_namespace.call_args[0][0]
    assert body.metadata.name == "pr-42"
    assert body.metadata.labels == labels


def test_create_namespace_already_exists(mock_k8s_client):
    """Test that an Active namespace is reused."""
    mock_k8s_client.v1.create_namespace.side_effect = ApiException(status=409)
    mock_k8s_client.v1.read_namespace.return_value = _namespace("Active")

    result = mock_k8s_client.create_namespace("pr-42")

    assert result is True
    mock_k8s_client.v1.create_namespace.assert_called_once()


def test_create_namespace_waits_out_terminating(mock_k8s_client, no_sleep):
    """Test that a namespace left over from a delete is recreated once gone."""
    mock_k8s_client.v1.create_namespace.side_effect = [ApiException(status=409), Mock()]
    mock_k8s_client.v1.read_namespace.side_effect = [
        _namespace("Terminating"),
        _namespace("Terminating"),
        ApiException(status=404),
    ]

    result = mock_k8s_client.create_namespace("pr-42")

    assert result is True
    assert mock_k8s_client.v1.create_namespace.call_count == 2
    no_sleep.assert_called_once()


def test_create_namespace_gone_after_conflict(mock_k8s_client, no_sleep):
    """Test that a namespace deleted between the conflict and the read is recreated."""
    mock_k8s_client.v1.create_namespace.side_effect = [ApiException(status=409), Mock()]
    mock_k8s_client.v1.read_namespace.side_effect = ApiException(status=404)

    result = mock_k8s_client.create_namespace("pr-42")

    assert result is True
    assert mock_k8s_client.v1.create_namespace.call_count == 2
    no_sleep.assert_not_called()


def test_create_namespace_stuck_terminating(mock_k8s_client, no_sleep):
    """Test that a namespace that never finishes terminating is an error."""
    mock_k8s_client.v1.create_namespace.side_effect = ApiException(status=409)
    mock_k8s_client.v1.read_namespace.return_value = _namespace("Terminating")

    with pytest.raises(KubernetesError, match="stuck in Terminating"):
        mock_k8s_client.create_namespace("pr-42")

    mock_k8s_client.v1.create_namespace.assert_called_once()


def test_create_namespace_api_error(mock_k8s_client):
    """Test creating namespace with API error."""
    mock_k8s_client.v1.create_namespace.side_effect = ApiException(status=500)

    with pytest.raises(KubernetesError, match="Failed to create namespace"):
        mock_k8s_client.create_namespace("test-namespace")


def test_create_namespace_invalid_name(mock_k8s_client):
    with pytest.raises(ValidationError):
        mock_k8s_client.create_namespace("INVALID-NAME-WITH-CAPS")

    mock_k8s_client.v1.create_namespace.assert_not_called()


def test_delete_namespace_success(mock_k8s_client):
    result = mock_k8s_client.delete_namespace("pr-42")

    assert result is True
    mock_k8s_client.v1.delete_namespace.assert_called_once_with("pr-42")


def test_delete_namespace_not_found(mock_k8s_client):
    """Test that deleting a missing namespace is not an error."""
    mock_k8s_client.v1.delete_namespace.side_effect = ApiException(status=404)

    assert mock_k8s_client.delete_namespace("pr-42") is False


def test_delete_namespace_api_error(mock_k8s_client):
    """Test that other API errors are raised."""
    api_exception = ApiException(status=403)
    api_exception.reason = "Forbidden"
    mock_k8s_client.v1.delete_namespace.side_effect = api_exception

    with pytest.raises(KubernetesError, match="Forbidden"):
        mock_k8s_client.delete_namespace("pr-42")


def test_list_namespaces_with_selector(mock_k8s_client):
    """Test listing only namespaces carrying a label."""
    first, second = Mock(), Mock()
    first.metadata.name = "pr-1"
    second.metadata.name = "pr-2"
    mock_k8s_client.v1.list_namespace.return_value = Mock(items=[first, second])

    result = mock_k8s_client.list_namespaces("app.kubernetes.io/managed-by=ephemeral-env-action")

    assert result == ["pr-1", "pr-2"]
    mock_k8s_client.v1.list_namespace.assert_called_once_with(
        label_selector="app.kubernetes.io/managed-by=ephemeral-env-action"
    )


def test_list_namespaces_api_error(mock_k8s_client):
    mock_k8s_client.v1.list_namespace.side_effect = ApiException(status=500)

    with pytest.raises(KubernetesError, match="Failed to list namespaces"):
        mock_k8s_client.list_namespaces()


def test_get_namespace_phase(mock_k8s_client):
    mock_k8s_client.v1.read_namespace.return_value = _namespace("Active")

    assert mock_k8s_client.get_namespace_phase("pr-42") == "Active"


def test_get_namespace_phase_missing(mock_k8s_client):
    mock_k8s_client.v1.read_namespace.side_effect = ApiException(status=404)

    assert mock_k8s_client.get_namespace_phase("pr-42") is None


def test_namespace_exists(mock_k8s_client):
    mock_k8s_client.v1.read_namespace.side_effect = [Mock(), ApiException(status=404)]

    assert mock_k8s_client.namespace_exists("pr-42") is True
    assert mock_k8s_client.namespace_exists("pr-42") is False


def test_namespace_exists_api_error(mock_k8s_client):
    mock_k8s_client.v1.read_namespace.side_effect = ApiException(status=500)

    with pytest.raises(KubernetesError, match="Failed to check namespace existence"):
        mock_k8s_client.namespace_exists("pr-42")


def test_wait_for_namespace_deletion_success(mock_k8s_client, no_sleep):
    """Test polling until the namespace is gone."""
    mock_k8s_client.v1.read_namespace.side_effect = [Mock(), Mock(), ApiException(status=404)]

    assert mock_k8s_client.wait_for_namespace_deletion("pr-42", timeout=60, interval=2) is True
    assert no_sleep.call_count == 2
    no_sleep.assert_called_with(2)


def test_wait_for_namespace_deletion_timeout(mock_k8s_client, no_sleep):
    """Test that polling gives up once the deadline passes."""
    mock_k8s_client.v1.read_namespace.return_value = Mock()

    assert mock_k8s_client.wait_for_namespace_deletion("pr-42", timeout=25) is False
    assert mock_k8s_client.v1.read_namespace.call_count == 3


# ============================================================================
# DEPLOYMENT OPERATIONS TESTS
# ============================================================================


def test_create_deployment_success(mock_k8s_client, template_dir):
    """Test that the rendered manifest is sent with env vars and namespace."""
    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        mock_k8s_client.create_deployment(
            name="backend",
            namespace="pr-42",
            image="myuser/backend:pr-42",
            port=5000,
            template_dir=template_dir,
            env_vars={"DEBUG": "true"},
        )

    manifest = mock_create.call_args[0][1]
    container = manifest["spec"]["template"]["spec"]["containers"][0]
    assert manifest["metadata"]["namespace"] == "pr-42"
    assert container["image"] == "myuser/backend:pr-42"
    assert container["env"] == [{"name": "DEBUG", "value": "true"}]


def test_create_deployment_already_exists_updates(mock_k8s_client, template_dir):
    """Test that creating an existing deployment triggers update."""
    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        api_exception = ApiException(status=409)
        api_exception.reason = "Conflict"
        mock_create.side_effect = api_exception

        mock_k8s_client.create_deployment(
            name="test-app",
            namespace="test-ns",
            image="nginx:latest",
            port=80,
            template_dir=template_dir,
        )

    mock_k8s_client.apps_v1.replace_namespaced_deployment.assert_called_once()


def test_create_deployment_fail_to_create_conflict_updates(mock_k8s_client, template_dir):
    """Test that an AlreadyExists wrapped by create_from_dict is also replaced."""
    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        mock_create.side_effect = FailToCreateError(
            [ApiException(status=409, reason="AlreadyExists")]
        )

        mock_k8s_client.create_deployment(
            name="test-app",
            namespace="test-ns",
            image="nginx:latest",
            port=80,
            template_dir=template_dir,
        )

    mock_k8s_client.apps_v1.replace_namespaced_deployment.assert_called_once()


@pytest.mark.parametrize("image, port", [("", 80), ("nginx:latest", 99999)])
def test_create_deployment_invalid_input(mock_k8s_client, template_dir, image, port):
    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        with pytest.raises(ValidationError):
            mock_k8s_client.create_deployment(
                name="test-app",
                namespace="test-ns",
                image=image,
                port=port,
                template_dir=template_dir,
            )

    mock_create.assert_not_called()


def test_create_deployment_missing_template(mock_k8s_client):
    with pytest.raises(TemplateError):
        mock_k8s_client.create_deployment(
            name="test-app",
            namespace="test-ns",
            image="nginx:latest",
            port=80,
            template_dir="nonexistent/directory",
        )


# ============================================================================
# SERVICE, MIDDLEWARE AND INGRESS TESTS
# ============================================================================


def test_create_service_success(mock_k8s_client, template_dir):
    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        mock_k8s_client.create_service(
            name="backend",
            namespace="pr-42",
            port=5000,
            target_port=5000,
            template_dir=template_dir,
        )

    manifest = mock_create.call_args[0][1]
    assert manifest["kind"] == "Service"
    assert manifest["spec"]["selector"] == {"app": "backend"}


def test_create_service_invalid_port(mock_k8s_client, template_dir):
    with pytest.raises(ValidationError):
        mock_k8s_client.create_service(
            name="test-svc",
            namespace="test-ns",
            port=99999,
            target_port=80,
            template_dir=template_dir,
        )


def test_create_middleware_success(mock_k8s_client, template_dir):
    """Test that the StripPrefix middleware goes through the custom objects API."""
    mock_custom_api = Mock()

    with patch("automation.k8s_client.client.CustomObjectsApi", return_value=mock_custom_api):
        mock_k8s_client.create_middleware(
            name=STRIPPREFIX_MIDDLEWARE,
            namespace="pr-42",
            prefixes=["/pr-42"],
            template_dir=template_dir,
        )

    kwargs = mock_custom_api.create_namespaced_custom_object.call_args.kwargs
    assert kwargs["group"] == "traefik.io"
    assert kwargs["version"] == "v1alpha1"
    assert kwargs["plural"] == "middlewares"
    assert kwargs["namespace"] == "pr-42"
    assert kwargs["body"]["spec"]["stripPrefix"]["prefixes"] == ["/pr-42"]


def test_create_middleware_without_prefixes(mock_k8s_client, template_dir):
    with pytest.raises(ValidationError, match="at least one prefix"):
        mock_k8s_client.create_middleware(
            name=STRIPPREFIX_MIDDLEWARE, namespace="pr-42", prefixes=[], template_dir=template_dir
        )


def test_create_ingress_success(mock_k8s_client, template_dir):
    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        mock_k8s_client.create_ingress(
            name="pr-42-backend-ingress",
            namespace="pr-42",
            path="/pr-42/api",
            service_name="backend",
            service_port=5000,
            middleware_name=STRIPPREFIX_MIDDLEWARE,
            template_dir=template_dir,
        )

    manifest = mock_create.call_args[0][1]
    annotations = manifest["metadata"]["annotations"]
    assert (
        annotations["traefik.ingress.kubernetes.io/router.middlewares"]
        == f"pr-42-{STRIPPREFIX_MIDDLEWARE}@kubernetescrd"
    )
    assert manifest["spec"]["rules"][0]["http"]["paths"][0]["path"] == "/pr-42/api"


def test_create_ingress_accepts_long_service_name(mock_k8s_client, template_dir):
    """Test that a maximal service name still fits in the prefixed ingress name."""
    service_name = "svc-" + "a" * 59

    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        mock_k8s_client.create_ingress(
            name=f"pr-42-{service_name}-ingress",
            namespace="pr-42",
            path="/pr-42/",
            service_name=service_name,
            service_port=80,
            middleware_name=STRIPPREFIX_MIDDLEWARE,
            template_dir=template_dir,
        )

    manifest = mock_create.call_args[0][1]
    assert manifest["metadata"]["name"] == f"pr-42-{service_name}-ingress"


@pytest.mark.parametrize(
    "path, service_name, message",
    [("pr-42", "backend", "must start with '/'"), ("/pr-42", "Backend", "Invalid service name")],
)
def test_create_ingress_invalid_input(mock_k8s_client, template_dir, path, service_name, message):
    with pytest.raises(ValidationError, match=message):
        mock_k8s_client.create_ingress(
            name="pr-42-backend-ingress",
            namespace="pr-42",
            path=path,
            service_name=service_name,
            service_port=5000,
            middleware_name=STRIPPREFIX_MIDDLEWARE,
            template_dir=template_dir,
        )


# ============================================================================
# YAML PARSING AND ROUTING TESTS
# ============================================================================


def test_parse_yaml_manifest_sets_namespace(mock_k8s_client):
    yaml_content = """
apiVersion: v1
kind: Service
metadata:
  name: test-service
  namespace: somewhere-else
"""

    result = mock_k8s_client._parse_yaml_manifest(yaml_content, "test-ns")

    assert result["metadata"]["name"] == "test-service"
    assert result["metadata"]["namespace"] == "test-ns"


@pytest.mark.parametrize("yaml_content", ["invalid: yaml: content: [[[[", "- just\n- a list\n"])
def test_parse_yaml_manifest_invalid(mock_k8s_client, yaml_content):
    with pytest.raises(KubernetesError, match="Failed to parse YAML manifest"):
        mock_k8s_client._parse_yaml_manifest(yaml_content, "test-ns")


@pytest.mark.parametrize(
    "api_version, expected",
    [
        ("traefik.io/v1alpha1", True),
        ("traefik.containo.us/v1alpha1", True),
        ("v1", False),
        ("apps/v1", False),
        ("networking.k8s.io/v1", False),
    ],
)
def test_is_traefik_crd(mock_k8s_client, api_version, expected):
    manifest = {"apiVersion": api_version, "kind": "Anything", "metadata": {"name": "test"}}

    assert mock_k8s_client._is_traefik_crd(manifest) is expected


def test_apply_traefik_crd_already_exists_updates(mock_k8s_client):
    """Test that an existing Traefik CRD is replaced with its resourceVersion."""
    manifest = {
        "apiVersion": "traefik.io/v1alpha1",
        "kind": "Middleware",
        "metadata": {"name": "stripprefix", "namespace": "pr-42"},
    }

    mock_custom_api = Mock()
    mock_custom_api.create_namespaced_custom_object.side_effect = ApiException(status=409)
    mock_custom_api.get_namespaced_custom_object.return_value = {
        "metadata": {"resourceVersion": "12345"}
    }

    with patch("automation.k8s_client.client.CustomObjectsApi", return_value=mock_custom_api):
        mock_k8s_client._apply_traefik_crd(manifest, "pr-42")

    body = mock_custom_api.replace_namespaced_custom_object.call_args.kwargs["body"]
    assert body["metadata"]["resourceVersion"] == "12345"


def test_apply_traefik_crd_missing_crds(mock_k8s_client):
    """Test that a cluster without Traefik gets an explanatory error."""
    manifest = {
        "apiVersion": "traefik.io/v1alpha1",
        "kind": "Middleware",
        "metadata": {"name": "stripprefix", "namespace": "pr-42"},
    }

    mock_custom_api = Mock()
    mock_custom_api.create_namespaced_custom_object.side_effect = ApiException(status=404)

    with patch("automation.k8s_client.client.CustomObjectsApi", return_value=mock_custom_api):
        with pytest.raises(KubernetesError, match="CRDs are not installed"):
            mock_k8s_client._apply_traefik_crd(manifest, "pr-42")


def test_apply_standard_resource_api_error(mock_k8s_client):
    manifest = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "backend"}}

    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        api_exception = ApiException(status=422)
        api_exception.reason = "Unprocessable Entity"
        mock_create.side_effect = api_exception

        with pytest.raises(KubernetesError, match="Failed to apply Service backend"):
            mock_k8s_client._apply_standard_resource(manifest, "pr-42")


def _live(resource_version, cluster_ip=None):
    live = Mock()
    live.metadata.resource_version = resource_version
    live.spec.cluster_ip = cluster_ip
    return live


def test_update_standard_resource_service(mock_k8s_client):
    """Test that a Service is replaced with the live resourceVersion and clusterIP."""
    manifest = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "test-svc"},
        "spec": {"ports": [{"port": 80}]},
    }
    mock_k8s_client.v1.read_namespaced_service.return_value = _live("77", "10.43.0.12")

    mock_k8s_client._update_standard_resource(manifest, "test-ns", "Service", "test-svc")

    mock_k8s_client.v1.replace_namespaced_service.assert_called_once_with(
        name="test-svc", namespace="test-ns", body=manifest
    )
    assert manifest["metadata"]["resourceVersion"] == "77"
    assert manifest["spec"]["clusterIP"] == "10.43.0.12"
    mock_k8s_client.v1.patch_namespaced_service.assert_not_called()


def test_update_standard_resource_ingress(mock_k8s_client):
    manifest = {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {"name": "test-ingress"},
    }

    mock_networking_v1 = Mock()
    mock_networking_v1.read_namespaced_ingress.return_value = _live("5")

    with patch("automation.k8s_client.client.NetworkingV1Api", return_value=mock_networking_v1):
        mock_k8s_client._update_standard_resource(manifest, "test-ns", "Ingress", "test-ingress")

    mock_networking_v1.replace_namespaced_ingress.assert_called_once_with(
        name="test-ingress", namespace="test-ns", body=manifest
    )
    assert manifest["metadata"]["resourceVersion"] == "5"


def test_update_deployment_drops_removed_env_vars(mock_k8s_client, template_dir):
    """Test that a redeploy without env sends a full manifest, not a merge patch."""
    mock_k8s_client.apps_v1.read_namespaced_deployment.return_value = _live("31")

    with patch("automation.k8s_client.utils.create_from_dict") as mock_create:
        mock_create.side_effect = ApiException(status=409)

        mock_k8s_client.create_deployment(
            name="backend",
            namespace="pr-42",
            image="myuser/backend:pr-42",
            port=5000,
            template_dir=template_dir,
        )

    body = mock_k8s_client.apps_v1.replace_namespaced_deployment.call_args.kwargs["body"]
    container = body["spec"]["template"]["spec"]["containers"][0]
    assert body["metadata"]["resourceVersion"] == "31"
    assert "env" not in container
    mock_k8s_client.apps_v1.patch_namespaced_deployment.assert_not_called()


def test_update_standard_resource_unsupported_kind(mock_k8s_client):
    manifest = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "test"}}

    with pytest.raises(KubernetesError, match="Update not implemented"):
        mock_k8s_client._update_standard_resource(manifest, "test-ns", "ConfigMap", "test")


def test_update_standard_resource_api_error(mock_k8s_client):
    manifest = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "test-svc"}}

    mock_k8s_client.v1.replace_namespaced_service.side_effect = ApiException(status=500)

    with pytest.raises(KubernetesError, match="Failed to update Service"):
        mock_k8s_client._update_standard_resource(manifest, "test-ns", "Service", "test-svc")


# ============================================================================
# PRUNING TESTS
# ============================================================================


def _listing(*names):
    items = []
    for name in names:
        item = Mock()
        item.metadata.name = name
        items.append(item)
    return Mock(items=items)


@pytest.fixture
def mock_networking_v1():
    with patch("automation.k8s_client.client.NetworkingV1Api") as networking_cls:
        yield networking_cls.return_value


def test_prune_resources_deletes_unlisted(mock_k8s_client, mock_networking_v1):
    """Test that managed resources missing from the keep set are deleted."""
    mock_k8s_client.apps_v1.list_namespaced_deployment.return_value = _listing("web", "worker")
    mock_k8s_client.v1.list_namespaced_service.return_value = _listing("web", "worker")
    mock_networking_v1.list_namespaced_ingress.return_value = _listing(
        "pr-42-web-ingress", "pr-42-worker-ingress"
    )

    pruned = mock_k8s_client.prune_resources(
        "pr-42",
        {"Deployment": {"web"}, "Service": {"web"}, "Ingress": {"pr-42-web-ingress"}},
    )

    assert pruned == ["Deployment/worker", "Service/worker", "Ingress/pr-42-worker-ingress"]
    mock_k8s_client.apps_v1.delete_namespaced_deployment.assert_called_once_with(
        name="worker", namespace="pr-42"
    )
    mock_k8s_client.v1.delete_namespaced_service.assert_called_once_with(
        name="worker", namespace="pr-42"
    )
    mock_networking_v1.delete_namespaced_ingress.assert_called_once_with(
        name="pr-42-worker-ingress", namespace="pr-42"
    )


def test_prune_resources_only_lists_managed(mock_k8s_client, mock_networking_v1):
    """Test that resources without the managed-by label are never considered."""
    for api in (
        mock_k8s_client.apps_v1.list_namespaced_deployment,
        mock_k8s_client.v1.list_namespaced_service,
        mock_networking_v1.list_namespaced_ingress,
    ):
        api.return_value = _listing()

    assert mock_k8s_client.prune_resources("pr-42", {}) == []

    mock_k8s_client.v1.list_namespaced_service.assert_called_once_with(
        namespace="pr-42", label_selector="app.kubernetes.io/managed-by=ephemeral-env-action"
    )
    mock_k8s_client.v1.delete_namespaced_service.assert_not_called()


def test_prune_resources_ignores_already_deleted(mock_k8s_client, mock_networking_v1):
    mock_k8s_client.apps_v1.list_namespaced_deployment.return_value = _listing("worker")
    mock_k8s_client.apps_v1.delete_namespaced_deployment.side_effect = ApiException(status=404)
    mock_k8s_client.v1.list_namespaced_service.return_value = _listing()
    mock_networking_v1.list_namespaced_ingress.return_value = _listing()

    assert mock_k8s_client.prune_resources("pr-42", {}) == ["Deployment/worker"]


def test_prune_resources_delete_error(mock_k8s_client, mock_networking_v1):
    mock_k8s_client.apps_v1.list_namespaced_deployment.return_value = _listing()
    mock_k8s_client.v1.list_namespaced_service.return_value = _listing("worker")
    mock_k8s_client.v1.delete_namespaced_service.side_effect = ApiException(
        status=403, reason="Forbidden"
    )

    with pytest.raises(KubernetesError, match="Failed to delete Service worker: Forbidden"):
        mock_k8s_client.prune_resources("pr-42", {"Deployment": set()})


def test_prune_resources_list_error(mock_k8s_client, mock_networking_v1):
    mock_k8s_client.apps_v1.list_namespaced_deployment.side_effect = ApiException(
        status=500, reason="Internal Server Error"
    )

    with pytest.raises(KubernetesError, match="Failed to list Deployments in pr-42"):
        mock_k8s_client.prune_resources("pr-42", {})
