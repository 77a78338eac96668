"""MCP Operator controllers."""

from src.controllers.mcpserver_controller import reconcile_mcpserver, resync_mcpserver

__all__ = [
    "reconcile_mcpserver",
    "resync_mcpserver",
]
