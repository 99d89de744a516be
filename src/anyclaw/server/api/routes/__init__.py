"""API routes."""

from . import events, health, meta, rpc, server_requests

__all__ = ["events", "health", "meta", "rpc", "server_requests"]
