"""Pydantic models for the MCPServer CRD.

These models mirror the CRD schema and provide validation for the operator.
Kubernetes core objects (containers, volumes, tolerations, ...) are carried as
plain camelCase dicts and copied into rendered manifests unchanged.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

GROUP = "kagent.dev"
VERSION = "v1alpha1"
PLURAL = "mcpservers"
KIND = "MCPServer"
API_VERSION = f"{GROUP}/{VERSION}"

PullPolicy = Literal["Always", "Never", "IfNotPresent"]

# =============================================================================
# Common models
# =============================================================================


class LocalObjectReference(BaseModel):
    """Reference to an object in the MCPServer's namespace."""

    name: str = Field(..., min_length=1, max_length=253)


class Condition(BaseModel):
    """A condition for status reporting."""

    type: str = Field(..., min_length=1, max_length=316)
    status: str = Field(..., pattern=r"^(True|False|Unknown)$")
    reason: str = Field(..., min_length=1, max_length=1024)
    message: str = Field(default="", max_length=32768)
    observedGeneration: int | None = Field(default=None, ge=0)
    lastTransitionTime: str | None = None


class OwnerReference(BaseModel):
    """Ownership of a child resource by its MCPServer.

    ``blockOwnerDeletion`` makes the garbage collector remove the child
    before the owner disappears.
    """

    apiVersion: str = API_VERSION
    kind: str = KIND
    name: str
    uid: str
    controller: bool = True
    blockOwnerDeletion: bool = True

    @classmethod
    def for_mcpserver(cls, body: dict[str, Any]) -> "OwnerReference":
        """Build the owner reference pointing at an MCPServer body."""
        metadata = body.get("metadata", {})
        return cls(
            apiVersion=body.get("apiVersion") or API_VERSION,
            kind=body.get("kind") or KIND,
            name=metadata["name"],
            uid=metadata["uid"],
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


# =============================================================================
# MCPServer
# =============================================================================


class InitContainerConfig(BaseModel):
    """Init container that copies the transport adapter binary (stdio only)."""

    image: str | None = None
    imagePullPolicy: PullPolicy | None = None
    resources: dict[str, Any] | None = None
    securityContext: dict[str, Any] | None = None


class ServiceAccountConfig(BaseModel):
    """ServiceAccount created for the MCP server pods."""

    annotations: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)


class MCPServerDeployment(BaseModel):
    """Container and pod settings for the MCP server Deployment."""

    image: str = ""
    imagePullPolicy: PullPolicy | None = None
    port: int = Field(default=3000, ge=1, le=65535)
    cmd: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    secretRefs: list[LocalObjectReference] = Field(default_factory=list)
    configMapRefs: list[LocalObjectReference] = Field(default_factory=list)
    volumeMounts: list[dict[str, Any]] = Field(default_factory=list)
    volumes: list[dict[str, Any]] = Field(default_factory=list)
    initContainer: InitContainerConfig | None = None
    serviceAccount: ServiceAccountConfig | None = None
    serviceAccountName: str | None = Field(default=None, min_length=1, max_length=253)
    sidecars: list[dict[str, Any]] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    resources: dict[str, Any] | None = None
    securityContext: dict[str, Any] | None = None
    podSecurityContext: dict[str, Any] | None = None
    tolerations: list[dict[str, Any]] = Field(default_factory=list)
    affinity: dict[str, Any] | None = None
    nodeSelector: dict[str, str] = Field(default_factory=dict)
    replicas: int | None = Field(default=None, ge=0)
    imagePullSecrets: list[LocalObjectReference] = Field(default_factory=list)


class StdioTransport(BaseModel):
    """Marker for the stdio transport. Carries no settings yet."""


class HTTPTransportTLS(BaseModel):
    """TLS settings for the HTTP transport.

    ``insecureSkipVerify`` is for development clusters only.
    """

    secretRef: str | None = Field(default=None, min_length=1, max_length=253)
    insecureSkipVerify: bool = False


class HTTPTransport(BaseModel):
    """Streamable HTTP transport settings."""

    model_config = ConfigDict(populate_by_name=True)

    targetPort: int | None = Field(default=None, ge=1, le=65535)
    targetPath: str | None = Field(default=None, alias="path", pattern=r"^/.*$")
    tls: HTTPTransportTLS | None = None


class MCPServerSpec(BaseModel):
    """MCPServer spec."""

    deployment: MCPServerDeployment
    transportType: str | None = None
    stdioTransport: StdioTransport | None = None
    httpTransport: HTTPTransport | None = None
    timeout: str | None = None


class MCPServerStatus(BaseModel):
    """MCPServer status."""

    conditions: list[Condition] = Field(default_factory=list, max_length=8)
    observedGeneration: int = 0
