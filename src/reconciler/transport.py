"""Transport strategy selection.

Decides how the MCP server process is exposed on the network:

- stdio: an init container copies the transport adapter binary into a shared
  ``emptyDir``; the main container runs the adapter, which spawns the stdio
  server once per client session and terminates it when the session ends.
- http: the process listens on its own port; optional TLS material is
  mounted from a Secret. A ``tls`` block without ``secretRef`` only carries
  client-side settings such as ``insecureSkipVerify`` and the port stays
  plain ``http``.
"""

import json
from typing import Any, assert_never

from pydantic import BaseModel, ConfigDict

from src.reconciler.errors import REASON_INVALID_TLS_SECRET, ReferenceFailure
from src.reconciler.normalizer import (
    HttpTransportConfig,
    NormalizedSpec,
    StdioTransportConfig,
)
from src.reconciler.resolver import ResolvedRefs

DEFAULT_ADAPTER_IMAGE = "ghcr.io/agentgateway/agentgateway:0.9.0-musl"
ADAPTER_BINARY = "agentgateway"
ADAPTER_SOURCE_PATH = f"/usr/bin/{ADAPTER_BINARY}"
ADAPTER_VOLUME = "adapter-bin"
ADAPTER_MOUNT_PATH = "/adapter"
ADAPTER_INIT_CONTAINER = "copy-transport-adapter"
ADAPTER_CONFIG_ENV = "MCP_ADAPTER_CONFIG"
STDIO_PATH = "/mcp"

TLS_VOLUME = "mcp-tls"
TLS_MOUNT_PATH = "/etc/mcp/tls"
TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"
TLS_CA_KEY = "ca.crt"

ANNOTATION_PREFIX = "kagent.dev"


class TransportPlan(BaseModel):
    """Pod and Service wiring for one transport."""

    model_config = ConfigDict(frozen=True)

    transport: str
    container_port: int
    path: str
    scheme: str = "http"
    command: tuple[str, ...] = ()
    args: tuple[str, ...] = ()
    env: tuple[tuple[str, str], ...] = ()
    init_containers: tuple[dict[str, Any], ...] = ()
    volumes: tuple[dict[str, Any], ...] = ()
    volume_mounts: tuple[dict[str, Any], ...] = ()
    service_annotations: tuple[tuple[str, str], ...] = ()


def _adapter_config(spec: NormalizedSpec) -> str:
    deployment = spec.deployment
    # Without cmd the adapter falls back to the image entrypoint.
    stdio: dict[str, Any] = {"args": list(deployment.args)}
    if deployment.cmd:
        stdio["cmd"] = deployment.cmd
    config = {
        "listen": {"port": spec.port, "path": STDIO_PATH},
        "stdio": stdio,
        "session": {
            "processPerSession": True,
            "terminateOnClose": True,
            "timeout": spec.timeout,
        },
    }
    return json.dumps(config, sort_keys=True, separators=(",", ":"))


def _init_container(spec: NormalizedSpec, adapter_image: str) -> dict[str, Any]:
    override = spec.deployment.initContainer
    image = (override.image if override else None) or adapter_image
    container: dict[str, Any] = {
        "name": ADAPTER_INIT_CONTAINER,
        "image": image,
        "command": ["cp", ADAPTER_SOURCE_PATH, f"{ADAPTER_MOUNT_PATH}/{ADAPTER_BINARY}"],
        "volumeMounts": [{"name": ADAPTER_VOLUME, "mountPath": ADAPTER_MOUNT_PATH}],
    }
    if override and override.imagePullPolicy:
        container["imagePullPolicy"] = override.imagePullPolicy
    if override and override.resources:
        container["resources"] = override.resources
    security_context = (override.securityContext if override else None) or (
        spec.deployment.securityContext
    )
    if security_context:
        container["securityContext"] = security_context
    return container


def _stdio_plan(spec: NormalizedSpec, adapter_image: str) -> TransportPlan:
    return TransportPlan(
        transport="stdio",
        container_port=spec.port,
        path=STDIO_PATH,
        command=(f"{ADAPTER_MOUNT_PATH}/{ADAPTER_BINARY}",),
        env=((ADAPTER_CONFIG_ENV, _adapter_config(spec)),),
        init_containers=(_init_container(spec, adapter_image),),
        volumes=({"name": ADAPTER_VOLUME, "emptyDir": {}},),
        volume_mounts=({"name": ADAPTER_VOLUME, "mountPath": ADAPTER_MOUNT_PATH},),
        service_annotations=(
            (f"{ANNOTATION_PREFIX}/mcp-transport", "stdio"),
            (f"{ANNOTATION_PREFIX}/mcp-path", STDIO_PATH),
            (f"{ANNOTATION_PREFIX}/mcp-timeout", spec.timeout),
        ),
    )


def _http_plan(
    spec: NormalizedSpec, transport: HttpTransportConfig, refs: ResolvedRefs
) -> TransportPlan:
    env: list[tuple[str, str]] = []
    volumes: list[dict[str, Any]] = []
    mounts: list[dict[str, Any]] = []
    annotations = [
        (f"{ANNOTATION_PREFIX}/mcp-transport", "http"),
        (f"{ANNOTATION_PREFIX}/mcp-path", transport.target_path),
        (f"{ANNOTATION_PREFIX}/mcp-timeout", spec.timeout),
    ]
    scheme = "http"

    tls = transport.tls
    if tls is not None:
        skip_verify = "true" if tls.insecure_skip_verify else "false"
        env.append(("MCP_TLS_INSECURE_SKIP_VERIFY", skip_verify))
        annotations.append((f"{ANNOTATION_PREFIX}/mcp-tls-insecure-skip-verify", skip_verify))

        if tls.secret_ref:
            scheme = "https"
            missing = sorted({TLS_CERT_KEY, TLS_KEY_KEY} - refs.tls_secret_keys)
            if missing:
                raise ReferenceFailure(
                    REASON_INVALID_TLS_SECRET,
                    f"Secret {tls.secret_ref!r} is missing required key(s): {', '.join(missing)}",
                )
            items = [
                {"key": TLS_CERT_KEY, "path": TLS_CERT_KEY},
                {"key": TLS_KEY_KEY, "path": TLS_KEY_KEY},
            ]
            env.append(("MCP_TLS_CERT_FILE", f"{TLS_MOUNT_PATH}/{TLS_CERT_KEY}"))
            env.append(("MCP_TLS_KEY_FILE", f"{TLS_MOUNT_PATH}/{TLS_KEY_KEY}"))
            if TLS_CA_KEY in refs.tls_secret_keys:
                items.append({"key": TLS_CA_KEY, "path": TLS_CA_KEY})
                env.append(("MCP_TLS_CA_FILE", f"{TLS_MOUNT_PATH}/{TLS_CA_KEY}"))
            volumes.append(
                {"name": TLS_VOLUME, "secret": {"secretName": tls.secret_ref, "items": items}}
            )
            mounts.append({"name": TLS_VOLUME, "mountPath": TLS_MOUNT_PATH, "readOnly": True})
            annotations.append((f"{ANNOTATION_PREFIX}/mcp-tls-secret", tls.secret_ref))

    return TransportPlan(
        transport="http",
        container_port=transport.target_port,
        path=transport.target_path,
        scheme=scheme,
        env=tuple(env),
        volumes=tuple(volumes),
        volume_mounts=tuple(mounts),
        service_annotations=tuple(annotations),
    )


def select_transport(
    spec: NormalizedSpec,
    refs: ResolvedRefs,
    adapter_image: str = DEFAULT_ADAPTER_IMAGE,
) -> TransportPlan:
    """Build the transport plan for a normalized spec.

    Args:
        spec: The normalized MCPServer spec.
        refs: The verified references (TLS key set for http).
        adapter_image: Default init container image for stdio, used unless
            the spec overrides it.

    Returns:
        The transport plan.

    Raises:
        ReferenceFailure: If the TLS Secret lacks ``tls.crt`` or ``tls.key``.
    """
    transport = spec.transport
    match transport:
        case StdioTransportConfig():
            return _stdio_plan(spec, adapter_image)
        case HttpTransportConfig():
            return _http_plan(spec, transport, refs)
        case _:
            assert_never(transport)
