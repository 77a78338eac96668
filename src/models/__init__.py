"""MCP Operator Pydantic models."""

from src.models.crds import (
    Condition,
    HTTPTransport,
    HTTPTransportTLS,
    MCPServerDeployment,
    MCPServerSpec,
    MCPServerStatus,
    OwnerReference,
)

__all__ = [
    "Condition",
    "HTTPTransport",
    "HTTPTransportTLS",
    "MCPServerDeployment",
    "MCPServerSpec",
    "MCPServerStatus",
    "OwnerReference",
]
