"""
Exception hierarchy for the Blender gateway.

Every error raised by the client carries a short machine-readable ``code``
so the HTTP layer can map failures to responses without string matching.
"""

from __future__ import annotations

import json
from typing import Any


class GatewayError(Exception):
    code = "gateway_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotRunningError(GatewayError):
    """The MCP subprocess is not attached (never spawned, exited or killed)."""

    code = "not_running"


class SpawnError(GatewayError):
    code = "spawn_failed"


class ConnectionLostError(GatewayError):
    """The subprocess went away while a call was in flight."""

    code = "connection_lost"


class DisconnectedError(ConnectionLostError):
    code = "disconnected"


class HandshakeError(GatewayError):
    code = "handshake_failed"


class RemoteError(GatewayError):
    """A JSON-RPC response carried an ``error`` member."""

    code = "remote_error"

    def __init__(self, message: str, error: Any = None) -> None:
        super().__init__(message)
        self.error = error

    @classmethod
    def from_payload(cls, error: Any) -> "RemoteError":
        message = error.get("message") if isinstance(error, dict) else None
        if not message:
            message = json.dumps(error) if not isinstance(error, str) else error
        return cls(message, error)


class RequestTimeoutError(GatewayError):
    code = "timeout"

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"Request timeout: {method}")
        self.method = method
        self.timeout = timeout


class CodeGenerationError(GatewayError):
    code = "codegen_failed"
