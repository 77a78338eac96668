"""Prometheus metrics for MCP operator observability."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

RECONCILIATION_TOTAL = Counter(
    "mcp_reconciliation_total",
    "Total reconciliation passes",
    ["controller", "result"],
)

RECONCILIATION_DURATION = Histogram(
    "mcp_reconciliation_duration_seconds",
    "Time spent in reconciliation",
    ["controller"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

CHILD_RESOURCE_WRITES = Counter(
    "mcp_child_resource_writes_total",
    "Writes to MCPServer child resources",
    ["kind", "action"],
)

CONDITION_STATUS = Gauge(
    "mcp_condition_status",
    "MCPServer condition status (1 True, 0 False, -1 Unknown)",
    ["namespace", "name", "type"],
)

_STATUS_VALUES = {"True": 1, "False": 0, "Unknown": -1}


def record_conditions(namespace: str, name: str, conditions: list[dict[str, object]]) -> None:
    """Publish the condition chain of one MCPServer."""
    for condition in conditions:
        CONDITION_STATUS.labels(
            namespace=namespace, name=name, type=str(condition["type"])
        ).set(_STATUS_VALUES.get(str(condition["status"]), -1))


def forget_conditions(namespace: str, name: str, condition_types: tuple[str, ...]) -> None:
    """Drop the condition series of a deleted MCPServer."""
    for condition_type in condition_types:
        try:
            CONDITION_STATUS.remove(namespace, name, condition_type)
        except KeyError:
            continue


def start_metrics_server(port: int = 9090) -> None:
    """Start the Prometheus metrics HTTP server."""
    start_http_server(port)
