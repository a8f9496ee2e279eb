"""Application server process management."""

from prerender.server.process import ProcessController, ServerHandle, marker_predicate

__all__ = [
    "ProcessController",
    "ServerHandle",
    "marker_predicate",
]
