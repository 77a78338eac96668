"""Unit tests for K8s client utilities."""

from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.config import ConfigException

from src.utils.k8s_client import K8sClient, get_k8s_client


@pytest.fixture
def apis() -> Iterator[dict[str, MagicMock]]:
    """Patch the kubernetes API classes used by K8sClient."""
    with (
        patch(
            "src.utils.k8s_client.config.load_incluster_config",
            side_effect=ConfigException("Not in cluster"),
        ),
        patch("src.utils.k8s_client.config.load_kube_config"),
        patch("src.utils.k8s_client.client.ApiClient") as mock_api_client,
        patch("src.utils.k8s_client.client.CoreV1Api") as mock_core_v1,
        patch("src.utils.k8s_client.client.AppsV1Api") as mock_apps_v1,
    ):
        mock_api_client.return_value.sanitize_for_serialization.side_effect = lambda obj: obj
        yield {
            "core_v1": mock_core_v1.return_value,
            "apps_v1": mock_apps_v1.return_value,
        }


class TestK8sClientInit:
    """Tests for K8sClient initialization."""

    def test_init_loads_incluster_config(self) -> None:
        """Test that in-cluster config is tried first."""
        with (
            patch("src.utils.k8s_client.config.load_incluster_config") as mock_incluster,
            patch("src.utils.k8s_client.config.load_kube_config") as mock_kubeconfig,
            patch("src.utils.k8s_client.client.ApiClient"),
            patch("src.utils.k8s_client.client.CoreV1Api"),
            patch("src.utils.k8s_client.client.AppsV1Api"),
        ):
            K8sClient()
            mock_incluster.assert_called_once()
            mock_kubeconfig.assert_not_called()

    def test_init_falls_back_to_kubeconfig(self) -> None:
        """Test that kubeconfig is loaded when in-cluster fails."""
        with (
            patch(
                "src.utils.k8s_client.config.load_incluster_config",
                side_effect=ConfigException("Not in cluster"),
            ),
            patch("src.utils.k8s_client.config.load_kube_config") as mock_kubeconfig,
            patch("src.utils.k8s_client.client.ApiClient"),
            patch("src.utils.k8s_client.client.CoreV1Api"),
            patch("src.utils.k8s_client.client.AppsV1Api"),
        ):
            K8sClient()
            mock_kubeconfig.assert_called_once()


class TestK8sClientGetResource:
    """Tests for K8sClient.get_resource."""

    def test_get_deployment_found(self, apis: dict[str, MagicMock]) -> None:
        """Test getting a Deployment that exists."""
        apis["apps_v1"].read_namespaced_deployment.return_value = {
            "metadata": {"name": "test-server"}
        }

        result = K8sClient().get_resource("Deployment", "test-server", "default")

        assert result == {"metadata": {"name": "test-server"}}
        apis["apps_v1"].read_namespaced_deployment.assert_called_once_with(
            "test-server", "default"
        )

    def test_get_secret_not_found(self, apis: dict[str, MagicMock]) -> None:
        """Test that a 404 is reported as None."""
        apis["core_v1"].read_namespaced_secret.side_effect = ApiException(status=404)

        assert K8sClient().get_resource("Secret", "missing", "default") is None

    def test_get_other_error_raised(self, apis: dict[str, MagicMock]) -> None:
        """Test that errors other than 404 propagate."""
        apis["core_v1"].read_namespaced_config_map.side_effect = ApiException(status=503)

        with pytest.raises(ApiException):
            K8sClient().get_resource("ConfigMap", "settings", "default")

    def test_unsupported_kind(self, apis: dict[str, MagicMock]) -> None:
        """Test that unknown kinds are rejected."""
        with pytest.raises(ValueError, match="Ingress"):
            K8sClient().get_resource("Ingress", "x", "default")


class TestK8sClientWrites:
    """Tests for create, replace and delete."""

    def test_create_service(self, apis: dict[str, MagicMock]) -> None:
        body: dict[str, Any] = {"metadata": {"name": "test-server"}}
        apis["core_v1"].create_namespaced_service.return_value = body

        result = K8sClient().create_resource("Service", "default", body)

        assert result == body
        apis["core_v1"].create_namespaced_service.assert_called_once_with("default", body)

    def test_replace_service_account(self, apis: dict[str, MagicMock]) -> None:
        body: dict[str, Any] = {"metadata": {"name": "test-server", "resourceVersion": "12"}}
        apis["core_v1"].replace_namespaced_service_account.return_value = body

        K8sClient().replace_resource("ServiceAccount", "test-server", "default", body)

        apis["core_v1"].replace_namespaced_service_account.assert_called_once_with(
            "test-server", "default", body
        )

    def test_delete_background(self, apis: dict[str, MagicMock]) -> None:
        assert K8sClient().delete_resource("ConfigMap", "test-server-config", "default")

        call_args = apis["core_v1"].delete_namespaced_config_map.call_args
        assert call_args[0] == ("test-server-config", "default")
        assert call_args[1]["body"].propagation_policy == "Background"

    def test_delete_already_gone(self, apis: dict[str, MagicMock]) -> None:
        apis["apps_v1"].delete_namespaced_deployment.side_effect = ApiException(status=404)

        assert K8sClient().delete_resource("Deployment", "test-server", "default") is False

    def test_delete_error_raised(self, apis: dict[str, MagicMock]) -> None:
        apis["apps_v1"].delete_namespaced_deployment.side_effect = ApiException(status=403)

        with pytest.raises(ApiException):
            K8sClient().delete_resource("Deployment", "test-server", "default")


class TestK8sClientListResources:
    """Tests for K8sClient.list_resources."""

    def test_list_by_labels(self, apis: dict[str, MagicMock]) -> None:
        apis["core_v1"].list_namespaced_service_account.return_value = MagicMock(
            items=[{"metadata": {"name": "a"}}, {"metadata": {"name": "b"}}]
        )

        result = K8sClient().list_resources(
            "ServiceAccount",
            "default",
            {"matchLabels": {"app.kubernetes.io/instance": "test-server"}},
        )

        assert [item["metadata"]["name"] for item in result] == ["a", "b"]
        apis["core_v1"].list_namespaced_service_account.assert_called_once_with(
            "default", label_selector="app.kubernetes.io/instance=test-server"
        )


class TestBuildLabelSelectorString:
    """Tests for K8sClient._build_label_selector_string."""

    def test_match_labels(self, apis: dict[str, MagicMock]) -> None:
        result = K8sClient()._build_label_selector_string(
            {"matchLabels": {"app": "mcp", "tier": "backend"}}
        )

        assert result == "app=mcp,tier=backend"

    def test_match_expressions(self, apis: dict[str, MagicMock]) -> None:
        result = K8sClient()._build_label_selector_string(
            {
                "matchExpressions": [
                    {"key": "env", "operator": "In", "values": ["dev", "prod"]},
                    {"key": "zone", "operator": "NotIn", "values": ["a"]},
                    {"key": "managed-by", "operator": "Exists"},
                    {"key": "legacy", "operator": "DoesNotExist"},
                ]
            }
        )

        assert result == "env in (dev,prod),zone notin (a),managed-by,!legacy"

    def test_empty_selector(self, apis: dict[str, MagicMock]) -> None:
        assert K8sClient()._build_label_selector_string({}) == ""


class TestGetK8sClient:
    """Tests for get_k8s_client singleton."""

    def test_get_k8s_client_returns_instance(self, apis: dict[str, MagicMock]) -> None:
        """Test that get_k8s_client returns a K8sClient instance."""
        import src.utils.k8s_client

        src.utils.k8s_client._client = None

        client = get_k8s_client()
        assert isinstance(client, K8sClient)

        # Calling again should return the same instance
        client2 = get_k8s_client()
        assert client is client2

        src.utils.k8s_client._client = None
