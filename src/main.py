"""MCP Operator entry point.

This module serves as the main entry point for the kopf operator.
It imports the controller to register its handlers with kopf.

Run with ``kopf run src/main.py --all-namespaces --liveness=http://0.0.0.0:8080/healthz``.
"""

import logging

import kopf
from pythonjsonlogger.json import JsonFormatter

from src.config import get_settings

# Import controllers to register handlers
from src.controllers import mcpserver_controller
from src.utils.metrics import start_metrics_server

# Re-export to satisfy linters (controllers register via decorators)
__all__ = ["mcpserver_controller"]


def _json_default(obj: object) -> str:
    """Fallback serializer for objects that json can't handle (e.g. kopf settings)."""
    return str(obj)


def configure_logging() -> None:
    """Configure structured JSON logging for all operator output."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            json_default=_json_default,
        )
    )
    logging.root.handlers = [handler]
    logging.root.setLevel(logging.INFO)


configure_logging()


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, logger: kopf.Logger, **_: object
) -> None:
    """Handle operator startup."""
    operator_settings = get_settings()
    # Status goes to the status subresource only; kopf keeps its progress in annotations.
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix="kagent.dev")
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix="kagent.dev")
    start_metrics_server(operator_settings.metrics_port)
    logger.info(
        f"MCP Operator starting up (metrics on :{operator_settings.metrics_port}, "
        f"resync every {operator_settings.resync_interval}s)"
    )


@kopf.on.probe(id="operator")
def probe_operator(**_: object) -> dict[str, str]:
    """Report operator health status."""
    return {"status": "running"}


@kopf.on.cleanup()
async def cleanup_handler(logger: kopf.Logger, **_: object) -> None:
    """Handle operator cleanup."""
    logger.info("MCP Operator shutting down")
