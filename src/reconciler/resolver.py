"""Reference resolution.

Checks that every object an MCPServer points at exists in its namespace.
Only existence is verified; contents are mounted by reference. Nothing is
cached between passes, so a reference that disappeared is caught next time.
"""

import logging
import re
from typing import Any, Protocol

from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel, ConfigDict, Field

from src.reconciler.errors import (
    REASON_IMAGE_NOT_FOUND,
    ReferenceFailure,
    TransientClusterError,
    is_transient,
)
from src.reconciler.normalizer import HttpTransportConfig, NormalizedSpec

logger = logging.getLogger(__name__)

# registry/repo path, optional :tag, optional @digest
_IMAGE_RE = re.compile(
    r"^[a-z0-9]+([._-][a-z0-9]+)*(:[0-9]+)?"
    r"(/[a-z0-9]+([._-][a-z0-9]+)*)*"
    r"(:[\w][\w.-]{0,127})?"
    r"(@sha256:[a-f0-9]{64})?$"
)


class ClusterReader(Protocol):
    """Read-only cluster lookups used while resolving references."""

    def get_resource(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None: ...


class ResolvedRefs(BaseModel):
    """Names of every verified reference (never their contents)."""

    model_config = ConfigDict(frozen=True)

    image: str
    secrets: tuple[str, ...] = ()
    config_maps: tuple[str, ...] = ()
    image_pull_secrets: tuple[str, ...] = ()
    tls_secret: str | None = None
    tls_secret_keys: frozenset[str] = Field(default_factory=frozenset)


def _volume_sources(volumes: list[dict[str, Any]]) -> list[tuple[str, str]]:
    """Collect the required Secret/ConfigMap sources of user volumes.

    Sources marked ``optional: true`` are skipped, the kubelet tolerates them.
    """
    refs: list[tuple[str, str]] = []
    for volume in volumes:
        secret = volume.get("secret")
        if secret and not secret.get("optional"):
            refs.append(("Secret", secret.get("secretName", "")))
        config_map = volume.get("configMap")
        if config_map and not config_map.get("optional"):
            refs.append(("ConfigMap", config_map.get("name", "")))
        for source in (volume.get("projected") or {}).get("sources") or []:
            if source.get("secret") and not source["secret"].get("optional"):
                refs.append(("Secret", source["secret"].get("name", "")))
            if source.get("configMap") and not source["configMap"].get("optional"):
                refs.append(("ConfigMap", source["configMap"].get("name", "")))
    return refs


def _lookup(
    reader: ClusterReader, kind: str, name: str, namespace: str, field: str
) -> dict[str, Any]:
    try:
        obj = reader.get_resource(kind, name, namespace)
    except ApiException as e:
        if is_transient(e):
            raise TransientClusterError(f"reading {kind} {namespace}/{name}: {e.reason}") from e
        raise ReferenceFailure(
            REASON_IMAGE_NOT_FOUND,
            f"{kind} {name!r} referenced by {field} could not be read: {e.reason}",
        ) from e
    if obj is None:
        raise ReferenceFailure(
            REASON_IMAGE_NOT_FOUND,
            f"{kind} {name!r} referenced by {field} not found in namespace {namespace}",
        )
    return obj


def _check_image(image: str) -> None:
    if not image:
        raise ReferenceFailure(REASON_IMAGE_NOT_FOUND, "deployment.image is not set")
    if not _IMAGE_RE.match(image):
        raise ReferenceFailure(
            REASON_IMAGE_NOT_FOUND,
            f"deployment.image {image!r} is not a valid image reference",
        )


def resolve_references(spec: NormalizedSpec, namespace: str, reader: ClusterReader) -> ResolvedRefs:
    """Verify that every referenced object exists.

    Stops at the first missing object.

    Args:
        spec: The normalized MCPServer spec.
        namespace: The MCPServer namespace.
        reader: Cluster read access.

    Returns:
        The verified references.

    Raises:
        ReferenceFailure: Naming the first missing object.
        TransientClusterError: If the API could not be reached.
    """
    deployment = spec.deployment
    _check_image(deployment.image)

    secrets = []
    for ref in deployment.secretRefs:
        _lookup(reader, "Secret", ref.name, namespace, "deployment.secretRefs")
        secrets.append(ref.name)

    config_maps = []
    for ref in deployment.configMapRefs:
        _lookup(reader, "ConfigMap", ref.name, namespace, "deployment.configMapRefs")
        config_maps.append(ref.name)

    for kind, name in _volume_sources(deployment.volumes):
        _lookup(reader, kind, name, namespace, "deployment.volumes")

    pull_secrets = []
    for ref in deployment.imagePullSecrets:
        _lookup(reader, "Secret", ref.name, namespace, "deployment.imagePullSecrets")
        pull_secrets.append(ref.name)

    tls_secret = None
    tls_keys: frozenset[str] = frozenset()
    transport = spec.transport
    if isinstance(transport, HttpTransportConfig) and transport.tls and transport.tls.secret_ref:
        tls_secret = transport.tls.secret_ref
        secret = _lookup(reader, "Secret", tls_secret, namespace, "httpTransport.tls.secretRef")
        tls_keys = frozenset((secret.get("data") or {}).keys()) | frozenset(
            (secret.get("stringData") or {}).keys()
        )

    logger.debug(
        "Resolved references in %s: secrets=%s configMaps=%s", namespace, secrets, config_maps
    )
    return ResolvedRefs(
        image=deployment.image,
        secrets=tuple(secrets),
        config_maps=tuple(config_maps),
        image_pull_secrets=tuple(pull_secrets),
        tls_secret=tls_secret,
        tls_secret_keys=tls_keys,
    )
