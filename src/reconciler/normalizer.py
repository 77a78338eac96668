"""Spec normalization.

Turns the raw ``spec`` dict of an MCPServer into an immutable
``NormalizedSpec`` with defaults applied, or raises ``ValidationFailure``.
Pure: no cluster access, inputs are never mutated.
"""

import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.models.crds import MCPServerDeployment, MCPServerSpec
from src.reconciler.errors import (
    REASON_INVALID_CONFIG,
    REASON_UNSUPPORTED_TRANSPORT,
    ValidationFailure,
)

DEFAULT_PORT = 3000
DEFAULT_REPLICAS = 1
DEFAULT_TIMEOUT = "30s"
DEFAULT_HTTP_PATH = "/mcp"
MAIN_CONTAINER_NAME = "mcp-server"

TRANSPORT_STDIO = "stdio"
TRANSPORT_HTTP = "http"

_DURATION_RE = re.compile(r"^(\d+(\.\d+)?(ns|us|µs|ms|s|m|h))+$")


class TLSConfig(BaseModel):
    """TLS wiring for the HTTP transport."""

    model_config = ConfigDict(frozen=True)

    secret_ref: str | None = None
    insecure_skip_verify: bool = False


class StdioTransportConfig(BaseModel):
    """The server speaks MCP over stdin/stdout only."""

    model_config = ConfigDict(frozen=True)

    type: Literal["stdio"] = TRANSPORT_STDIO


class HttpTransportConfig(BaseModel):
    """The server already listens for streamable HTTP."""

    model_config = ConfigDict(frozen=True)

    type: Literal["http"] = TRANSPORT_HTTP
    target_port: int
    target_path: str = DEFAULT_HTTP_PATH
    tls: TLSConfig | None = None


Transport = Annotated[StdioTransportConfig | HttpTransportConfig, Field(discriminator="type")]


class NormalizedSpec(BaseModel):
    """An MCPServer spec with defaults filled in and cross-field rules checked."""

    model_config = ConfigDict(frozen=True)

    deployment: MCPServerDeployment
    transport: Transport
    port: int
    replicas: int
    timeout: str


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item["loc"]) or "spec"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def _check_service_account(deployment: dict[str, Any]) -> None:
    if deployment.get("serviceAccount") is not None and deployment.get("serviceAccountName"):
        raise ValidationFailure(
            REASON_INVALID_CONFIG,
            "deployment.serviceAccount and deployment.serviceAccountName are mutually exclusive",
        )


def _select_transport(spec: MCPServerSpec) -> StdioTransportConfig | HttpTransportConfig:
    transport_type = spec.transportType or TRANSPORT_STDIO

    if transport_type == TRANSPORT_STDIO:
        if spec.httpTransport is not None:
            raise ValidationFailure(
                REASON_UNSUPPORTED_TRANSPORT,
                "httpTransport is set but transportType is stdio",
            )
        return StdioTransportConfig()

    if transport_type == TRANSPORT_HTTP:
        http = spec.httpTransport
        if http is None:
            raise ValidationFailure(
                REASON_UNSUPPORTED_TRANSPORT,
                "transportType is http but httpTransport is not set",
            )
        if spec.stdioTransport is not None:
            raise ValidationFailure(
                REASON_UNSUPPORTED_TRANSPORT,
                "stdioTransport is set but transportType is http",
            )
        tls = None
        if http.tls is not None:
            tls = TLSConfig(
                secret_ref=http.tls.secretRef,
                insecure_skip_verify=http.tls.insecureSkipVerify,
            )
        return HttpTransportConfig(
            target_port=http.targetPort or spec.deployment.port,
            target_path=http.targetPath or DEFAULT_HTTP_PATH,
            tls=tls,
        )

    raise ValidationFailure(
        REASON_UNSUPPORTED_TRANSPORT,
        f"transportType {transport_type!r} is not one of: {TRANSPORT_STDIO}, {TRANSPORT_HTTP}",
    )


def _check_timeout(timeout: str) -> None:
    if not _DURATION_RE.match(timeout) or not re.search(r"[1-9]", timeout):
        raise ValidationFailure(
            REASON_INVALID_CONFIG,
            f"timeout {timeout!r} is not a positive duration such as '30s' or '1m30s'",
        )


def _check_volume_mounts(deployment: MCPServerDeployment) -> None:
    declared = {volume.get("name") for volume in deployment.volumes}
    for mount in deployment.volumeMounts:
        name = mount.get("name")
        if name not in declared:
            raise ValidationFailure(
                REASON_INVALID_CONFIG,
                f"deployment.volumeMounts references undeclared volume {name!r}",
            )


def _check_sidecars(deployment: MCPServerDeployment) -> None:
    seen = {MAIN_CONTAINER_NAME}
    for sidecar in deployment.sidecars:
        name = sidecar.get("name")
        if not name:
            raise ValidationFailure(REASON_INVALID_CONFIG, "every sidecar needs a name")
        if name in seen:
            raise ValidationFailure(
                REASON_INVALID_CONFIG,
                f"sidecar name {name!r} is duplicated or reserved",
            )
        seen.add(name)


def normalize(raw_spec: dict[str, Any]) -> NormalizedSpec:
    """Validate an MCPServer spec and apply defaults.

    The service-account exclusivity rule is checked before anything else so
    that a spec violating it is always rejected as ``InvalidConfig``.

    Args:
        raw_spec: The ``spec`` section of the MCPServer object.

    Returns:
        The normalized spec.

    Raises:
        ValidationFailure: With reason ``InvalidConfig`` or
            ``UnsupportedTransport``.
    """
    deployment_raw = raw_spec.get("deployment")
    if isinstance(deployment_raw, dict):
        _check_service_account(deployment_raw)

    try:
        spec = MCPServerSpec.model_validate(raw_spec)
    except ValidationError as e:
        raise ValidationFailure(REASON_INVALID_CONFIG, _format_validation_error(e)) from e

    transport = _select_transport(spec)

    timeout = spec.timeout or DEFAULT_TIMEOUT
    _check_timeout(timeout)
    _check_volume_mounts(spec.deployment)
    _check_sidecars(spec.deployment)

    replicas = spec.deployment.replicas
    return NormalizedSpec(
        deployment=spec.deployment,
        transport=transport,
        port=spec.deployment.port or DEFAULT_PORT,
        replicas=DEFAULT_REPLICAS if replicas is None else replicas,
        timeout=timeout,
    )
