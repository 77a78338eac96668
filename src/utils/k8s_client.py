"""Kubernetes client utilities.

Provides a wrapper around the kubernetes client for the child resources the
MCPServer controller manages. Objects go in and come out as camelCase dicts
(the API's wire shape) so rendered manifests and observed objects compare
directly.
"""

from typing import Any, cast

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

# kind -> (API group attribute, method suffix)
_KINDS: dict[str, tuple[str, str]] = {
    "Deployment": ("apps_v1", "namespaced_deployment"),
    "Service": ("core_v1", "namespaced_service"),
    "ConfigMap": ("core_v1", "namespaced_config_map"),
    "ServiceAccount": ("core_v1", "namespaced_service_account"),
    "Secret": ("core_v1", "namespaced_secret"),
}


class K8sClient:
    """Kubernetes client wrapper for MCP operator operations."""

    def __init__(self) -> None:
        """Initialize the Kubernetes client.

        Attempts to load in-cluster config first, falls back to kubeconfig.
        """
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()

        self.api_client = client.ApiClient()
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.apps_v1 = client.AppsV1Api(self.api_client)

    def _method(self, verb: str, kind: str) -> Any:
        try:
            api_attr, suffix = _KINDS[kind]
        except KeyError:
            raise ValueError(f"Unsupported kind: {kind}") from None
        return getattr(getattr(self, api_attr), f"{verb}_{suffix}")

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return cast(dict[str, Any], self.api_client.sanitize_for_serialization(obj))

    def get_resource(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None:
        """Get a namespaced object by kind and name.

        Args:
            kind: One of Deployment, Service, ConfigMap, ServiceAccount, Secret.
            name: The object name.
            namespace: The object namespace.

        Returns:
            The object as a camelCase dict, or None if not found.
        """
        try:
            obj = self._method("read", kind)(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._to_dict(obj)

    def create_resource(self, kind: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create a namespaced object.

        Args:
            kind: The object kind.
            namespace: The target namespace.
            body: The manifest.

        Returns:
            The created object.
        """
        result = self._method("create", kind)(namespace, body)
        return self._to_dict(result)

    def replace_resource(
        self, kind: str, name: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace a namespaced object.

        The body must carry the observed ``metadata.resourceVersion``; a
        concurrent write makes the API server answer 409.

        Returns:
            The replaced object.
        """
        result = self._method("replace", kind)(name, namespace, body)
        return self._to_dict(result)

    def delete_resource(self, kind: str, name: str, namespace: str) -> bool:
        """Delete a namespaced object in the background.

        Returns:
            True if the object was deleted, False if it was already gone.
        """
        try:
            self._method("delete", kind)(
                name, namespace, body=client.V1DeleteOptions(propagation_policy="Background")
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def list_resources(
        self, kind: str, namespace: str, label_selector: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """List namespaced objects of one kind by label selector.

        Args:
            kind: The object kind.
            namespace: The namespace to search in.
            label_selector: Dict with matchLabels and/or matchExpressions.

        Returns:
            List of matching objects.
        """
        selector_str = self._build_label_selector_string(label_selector)
        result = self._method("list", kind)(namespace, label_selector=selector_str)
        return [self._to_dict(item) for item in result.items]

    def _build_label_selector_string(self, selector: dict[str, Any]) -> str:
        """Build a label selector string from a selector dict.

        Args:
            selector: Dict with matchLabels and/or matchExpressions.

        Returns:
            A comma-separated label selector string.
        """
        parts: list[str] = []

        for key, value in selector.get("matchLabels", {}).items():
            parts.append(f"{key}={value}")

        for expr in selector.get("matchExpressions", []):
            key = expr.get("key", "")
            operator = expr.get("operator", "")
            values = expr.get("values", [])

            if operator == "In":
                parts.append(f"{key} in ({','.join(values)})")
            elif operator == "NotIn":
                parts.append(f"{key} notin ({','.join(values)})")
            elif operator == "Exists":
                parts.append(key)
            elif operator == "DoesNotExist":
                parts.append(f"!{key}")

        return ",".join(parts)


# Module-level client instance (lazy initialization)
_client: K8sClient | None = None


def get_k8s_client() -> K8sClient:
    """Get or create the singleton K8s client instance.

    Returns:
        The K8sClient instance.
    """
    global _client  # noqa: PLW0603
    if _client is None:
        _client = K8sClient()
    return _client
