"""
Minimal MCP tool server speaking JSON-RPC over stdin/stdout.

A tool server is a standalone process that:
1. Answers the ``initialize`` handshake
2. Reads JSON-RPC requests from stdin, one per line
3. Dispatches ``tools/call`` to registered ToolHandlers
4. Writes JSON-RPC responses to stdout

This is what the gateway talks to when no Blender is around (see
``blender_gateway.servers.mock_blender``). To create a tool server:

    from blender_gateway.server import StdioToolServer, ToolHandler

    class EchoTool(ToolHandler):
        name = "echo"
        description = "Echo the input"
        parameters = {
            "message": {"type": "string", "description": "Text to echo"},
        }

        def handle(self, params: dict) -> str:
            return params["message"]

    if __name__ == "__main__":
        server = StdioToolServer("echo-server")
        server.register(EchoTool())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

from blender_gateway.config import PROTOCOL_VERSION

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class MethodNotFoundError(Exception):
    pass


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does. The server handles transport and
    wraps the return value into MCP content blocks.
    """

    # Subclasses must set these
    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given arguments.

        Returns:
            A string (text block), a list of ready-made content blocks,
            or anything JSON-serializable (rendered as a text block).
        """
        ...

    def get_schema(self) -> dict:
        """Return the MCP tool schema for discovery."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.parameters,
                "required": self.required,
            },
        }


def to_content(value: Any) -> list[dict[str, Any]]:
    """Render a handler return value as MCP content blocks."""
    if isinstance(value, list) and all(isinstance(b, dict) and "type" in b for b in value):
        return value
    if isinstance(value, str):
        return [{"type": "text", "text": value}]
    return [{"type": "text", "text": json.dumps(value, indent=2)}]


class StdioToolServer:
    """
    MCP server that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize"      → server info and capabilities
        - "notifications/*" → accepted, never answered
        - "ping"            → health check
        - "tools/list"      → {"tools": [schemas]}
        - "tools/call"      → {"content": [...], "isError": bool}
    """

    def __init__(self, name: str = "blender-gateway-tools", version: str = "1.0.0"):
        self.name = name
        self.version = version
        self.initialized = False
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """
        Main loop: read requests from stdin, dispatch, write responses to stdout.

        This blocks until stdin is closed (parent process terminates).
        """
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        logger.info(f"Tool server starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")

        for line in stdin:
            response = self.handle_line(line)
            if response is not None:
                stdout.write(json.dumps(response) + "\n")
                stdout.flush()

    def handle_line(self, line: str) -> dict[str, Any] | None:
        """Process one input line and return the response to write, if any."""
        line = line.strip()
        if not line:
            return None

        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            return _error(None, PARSE_ERROR, f"Parse error: {e}")
        if not isinstance(request, dict):
            return _error(None, INVALID_REQUEST, "Invalid request")

        method = request.get("method", "")
        if "id" not in request:
            self._notify(method)
            return None

        request_id = request.get("id")
        params = request.get("params") or {}
        try:
            return _result(request_id, self._dispatch(method, params))
        except MethodNotFoundError as e:
            return _error(request_id, METHOD_NOT_FOUND, str(e))
        except Exception as e:
            logger.exception(f"Request {method} failed")
            return _error(request_id, INTERNAL_ERROR, str(e))

    def _notify(self, method: str) -> None:
        if method == "notifications/initialized":
            self.initialized = True
        logger.debug(f"Notification: {method}")

    def _dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            tool_name = params.get("name", "")
            handler = self._handlers.get(tool_name)
            if not handler:
                return {
                    "content": to_content(
                        f"Unknown tool: '{tool_name}'. Available: {list(self._handlers.keys())}"
                    ),
                    "isError": True,
                }
            try:
                value = handler.handle(params.get("arguments") or {})
            except Exception as e:
                return {"content": to_content(f"Error: {e}"), "isError": True}
            return {"content": to_content(value), "isError": False}

        raise MethodNotFoundError(f"Unknown method: '{method}'")


def _result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }
