"""MCP Operator utilities."""

from src.utils.k8s_client import K8sClient, get_k8s_client

__all__ = [
    "K8sClient",
    "get_k8s_client",
]
