"""Pytest fixtures for MCP Operator tests."""

import copy
import itertools
from collections.abc import Callable
from typing import Any

import pytest
from kubernetes.client.exceptions import ApiException

from src.reconciler.retry import RetryPolicy


class FakeCluster:
    """In-memory stand-in for ``K8sClient``.

    Stores objects as camelCase dicts, assigns uids and resourceVersions,
    bumps ``metadata.generation`` on Deployment spec changes, enforces
    optimistic concurrency on replace, and records every write.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.writes: list[tuple[str, str, str]] = []
        self.failures: dict[tuple[str, str], list[BaseException]] = {}
        self._counter = itertools.count(1)

    # -- test helpers -------------------------------------------------------

    def add(self, kind: str, name: str, namespace: str = "default", **fields: Any) -> None:
        """Seed an object without recording a write."""
        metadata = {"name": name, "namespace": namespace, **fields.pop("metadata", {})}
        obj = {"kind": kind, "metadata": metadata, **fields}
        metadata.setdefault("uid", f"uid-{next(self._counter)}")
        obj["metadata"]["resourceVersion"] = str(next(self._counter))
        self.objects[(kind, namespace, name)] = obj

    def fail(self, verb: str, kind: str, *errors: BaseException) -> None:
        """Queue errors raised by the next calls of ``verb`` on ``kind``."""
        self.failures.setdefault((verb, kind), []).extend(errors)

    def get(self, kind: str, name: str, namespace: str = "default") -> dict[str, Any] | None:
        return self.objects.get((kind, namespace, name))

    def names(self, kind: str) -> list[str]:
        return sorted(name for (k, _, name) in self.objects if k == kind)

    def set_deployment_available(self, name: str, namespace: str = "default") -> None:
        """Report every desired replica of a Deployment as available."""
        deployment = self.objects[("Deployment", namespace, name)]
        replicas = deployment["spec"].get("replicas", 1)
        deployment["status"] = {
            "observedGeneration": deployment["metadata"].get("generation", 1),
            "replicas": replicas,
            "updatedReplicas": replicas,
            "availableReplicas": replicas,
            "readyReplicas": replicas,
        }

    def delete_owner(self, uid: str) -> list[tuple[str, str]]:
        """Simulate the garbage collector after the owner with ``uid`` is deleted."""
        removed = []
        for key, obj in list(self.objects.items()):
            refs = obj["metadata"].get("ownerReferences") or []
            if any(ref.get("uid") == uid and ref.get("blockOwnerDeletion") for ref in refs):
                del self.objects[key]
                removed.append((key[0], key[2]))
        return sorted(removed)

    def _maybe_fail(self, verb: str, kind: str) -> None:
        queue = self.failures.get((verb, kind))
        if queue:
            raise queue.pop(0)

    # -- K8sClient interface ------------------------------------------------

    def get_resource(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None:
        self._maybe_fail("get", kind)
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def create_resource(self, kind: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("create", kind)
        name = body["metadata"]["name"]
        if (kind, namespace, name) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        obj = copy.deepcopy(body)
        obj["metadata"]["uid"] = f"uid-{next(self._counter)}"
        obj["metadata"]["resourceVersion"] = str(next(self._counter))
        if kind == "Deployment":
            obj["metadata"]["generation"] = 1
        self.objects[(kind, namespace, name)] = obj
        self.writes.append(("create", kind, name))
        return copy.deepcopy(obj)

    def replace_resource(
        self, kind: str, name: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        self._maybe_fail("replace", kind)
        stored = self.objects.get((kind, namespace, name))
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        obj = copy.deepcopy(body)
        obj["metadata"]["uid"] = stored["metadata"]["uid"]
        obj["metadata"]["resourceVersion"] = str(next(self._counter))
        if kind == "Deployment":
            generation = stored["metadata"].get("generation", 1)
            if obj.get("spec") != stored.get("spec"):
                generation += 1
            obj["metadata"]["generation"] = generation
        if "status" in stored:
            obj["status"] = stored["status"]
        self.objects[(kind, namespace, name)] = obj
        self.writes.append(("update", kind, name))
        return copy.deepcopy(obj)

    def delete_resource(self, kind: str, name: str, namespace: str) -> bool:
        self._maybe_fail("delete", kind)
        if self.objects.pop((kind, namespace, name), None) is None:
            return False
        self.writes.append(("delete", kind, name))
        return True

    def list_resources(
        self, kind: str, namespace: str, label_selector: dict[str, Any]
    ) -> list[dict[str, Any]]:
        self._maybe_fail("list", kind)
        match_labels = label_selector.get("matchLabels", {})
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in sorted(self.objects.items())
            if k == kind
            and ns == namespace
            and all(
                (obj["metadata"].get("labels") or {}).get(key) == value
                for key, value in match_labels.items()
            )
        ]


@pytest.fixture
def fake_cluster() -> FakeCluster:
    """Create an empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy without delays."""
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def sample_stdio_spec() -> dict[str, Any]:
    """Return a sample stdio MCPServer spec."""
    return {
        "transportType": "stdio",
        "deployment": {
            "image": "x/y:1",
            "port": 3000,
            "cmd": "uvx",
            "args": ["mcp-server-fetch"],
        },
    }


@pytest.fixture
def sample_http_spec() -> dict[str, Any]:
    """Return a sample http MCPServer spec with TLS."""
    return {
        "transportType": "http",
        "httpTransport": {
            "targetPort": 8443,
            "path": "/api/mcp",
            "tls": {"secretRef": "mcp-tls"},
        },
        "deployment": {
            "image": "ghcr.io/example/mcp-http:2.1.0",
            "port": 443,
            "replicas": 2,
        },
        "timeout": "45s",
    }


@pytest.fixture
def make_body() -> Callable[..., dict[str, Any]]:
    """Build an MCPServer body around a spec."""

    def _make(
        spec: dict[str, Any],
        generation: int = 1,
        status: dict[str, Any] | None = None,
        name: str = "test-server",
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "apiVersion": "kagent.dev/v1alpha1",
            "kind": "MCPServer",
            "metadata": {
                "name": name,
                "namespace": "default",
                "uid": "test-uid-123",
                "generation": generation,
            },
            "spec": spec,
        }
        if status is not None:
            body["status"] = status
        return body

    return _make
