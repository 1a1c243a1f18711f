"""
Protocol client for the Playwright automation server
"""
from .client import MCPClient, get_client, shutdown_client

__all__ = ["MCPClient", "get_client", "shutdown_client"]
