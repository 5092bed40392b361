"""
Runtime configuration for the gateway, read from the process environment.

    BLENDER_HOST / BLENDER_PORT   where the blender-mcp server finds Blender
    BLENDER_MCP_COMMAND           command line used to spawn the MCP server
    MCP_REQUEST_TIMEOUT           seconds before a pending call is abandoned
    MCP_STARTUP_GRACE             seconds to wait before the handshake
    MCP_RECONNECT_DELAY           seconds between auto-reconnect attempts
    MCP_MAX_RECONNECT_ATTEMPTS    auto-reconnect cap after unexpected exits
    BLENDER_CODEGEN_MODEL         "provider:model" used for prompt -> code
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from typing import Mapping

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "Blender MCP HTTP Server"
CLIENT_VERSION = "1.0.0"

DEFAULT_COMMAND = ("uvx", "blender-mcp")


@dataclass(frozen=True)
class GatewayConfig:
    blender_host: str = "localhost"
    blender_port: int = 9876
    command: tuple[str, ...] = DEFAULT_COMMAND
    request_timeout: float = 60.0
    startup_grace: float = 3.0
    reconnect_delay: float = 2.0
    max_reconnect_attempts: int = 3
    codegen_model: str = "anthropic:claude-sonnet-4-5-20250929"
    client_name: str = CLIENT_NAME
    client_version: str = CLIENT_VERSION
    extra_env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GatewayConfig":
        env = os.environ if environ is None else environ
        defaults = cls()

        command = defaults.command
        raw_command = env.get("BLENDER_MCP_COMMAND", "").strip()
        if raw_command:
            command = tuple(shlex.split(raw_command))

        return cls(
            blender_host=env.get("BLENDER_HOST") or defaults.blender_host,
            blender_port=_parse(env, "BLENDER_PORT", int, defaults.blender_port),
            command=command,
            request_timeout=_parse(env, "MCP_REQUEST_TIMEOUT", float, defaults.request_timeout),
            startup_grace=_parse(env, "MCP_STARTUP_GRACE", float, defaults.startup_grace),
            reconnect_delay=_parse(env, "MCP_RECONNECT_DELAY", float, defaults.reconnect_delay),
            max_reconnect_attempts=_parse(
                env, "MCP_MAX_RECONNECT_ATTEMPTS", int, defaults.max_reconnect_attempts
            ),
            codegen_model=env.get("BLENDER_CODEGEN_MODEL") or defaults.codegen_model,
        )

    def subprocess_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Inherited environment plus the Blender host/port overrides."""
        env = dict(os.environ if base is None else base)
        env.update(self.extra_env)
        env["BLENDER_HOST"] = self.blender_host
        env["BLENDER_PORT"] = str(self.blender_port)
        return env


def _parse(env: Mapping[str, str], name: str, kind: type, default):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = kind(raw)
    except ValueError:
        raise ValueError(f"{name} must be a {kind.__name__}, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value
