"""
Blender gateway — drive Blender through a blender-mcp subprocess.

Architecture:
    ┌──────────────┐     stdio      ┌──────────────┐    TCP    ┌─────────┐
    │   Gateway    │ ────────────── │  blender-mcp │ ───────── │ Blender │
    │ (HTTP / CLI) │   JSON-RPC     │ (subprocess) │           │         │
    └──────────────┘     pipes      └──────────────┘           └─────────┘

BlenderMCPClient owns the subprocess: it performs the MCP handshake,
frames newline-delimited JSON-RPC, correlates responses by id, times out
stale calls and respawns the server when it dies.

BlenderCodeGenerator turns natural-language prompts into bpy code, and the
bridge exposes the server's tools to LangChain agents. Both need langchain,
so they are imported lazily.
"""

import importlib

from blender_gateway.client import BlenderMCPClient, ConnectionState
from blender_gateway.config import GatewayConfig
from blender_gateway.errors import (
    ConnectionLostError,
    DisconnectedError,
    GatewayError,
    HandshakeError,
    NotRunningError,
    RemoteError,
    RequestTimeoutError,
    SpawnError,
)
from blender_gateway.results import extract_image, extract_text


# LangChain-backed helpers are imported lazily to keep the mock server standalone
_LAZY = {
    "BlenderCodeGenerator": "blender_gateway.prompt",
    "load_langchain_tools": "blender_gateway.bridge",
}


def __getattr__(name):
    if name in _LAZY:
        value = getattr(importlib.import_module(_LAZY[name]), name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "BlenderMCPClient",
    "BlenderCodeGenerator",
    "ConnectionState",
    "ConnectionLostError",
    "DisconnectedError",
    "GatewayConfig",
    "GatewayError",
    "HandshakeError",
    "NotRunningError",
    "RemoteError",
    "RequestTimeoutError",
    "SpawnError",
    "extract_image",
    "extract_text",
    "load_langchain_tools",
]
