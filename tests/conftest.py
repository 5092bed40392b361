"""Pytest fixtures: an in-memory transport that stands in for the MCP subprocess."""

import asyncio
import json
import os
import sys
from pathlib import Path

import pytest

from blender_gateway.client import BlenderMCPClient
from blender_gateway.config import GatewayConfig
from blender_gateway.errors import NotRunningError

ROOT = Path(__file__).resolve().parents[1]


class FakeTransport:
    """Records written messages; tests push stdout bytes and exits by hand."""

    def __init__(self, command, env=None, on_data=None, on_exit=None,
                 spawn_error=None, initialize_reply=None):
        self.command = list(command)
        self.env = env
        self.on_data = on_data
        self.on_exit = on_exit
        self.spawn_error = spawn_error
        # None -> answer initialize automatically; False -> never answer
        self.initialize_reply = initialize_reply
        self.sent = []
        self.started = False
        self.stopped = False
        self.killed = False
        self._alive = False

    async def start(self):
        if self.spawn_error is not None:
            raise self.spawn_error
        self.started = True
        self._alive = True

    def is_alive(self):
        return self._alive and not self.killed

    def send(self, line):
        if not self.is_alive():
            raise NotRunningError("MCP process not running")
        assert line.endswith("\n") and line.count("\n") == 1
        message = json.loads(line)
        self.sent.append(message)
        if message.get("method") == "initialize":
            self._answer_initialize(message)

    def _answer_initialize(self, message):
        if self.initialize_reply is False:
            return
        reply = self.initialize_reply or {
            "result": {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake-blender-mcp", "version": "0.0.1"},
            }
        }
        self.feed({"jsonrpc": "2.0", "id": message["id"], **reply})

    def kill(self):
        self.killed = True
        self._alive = False

    async def stop(self, timeout=5.0):
        self.stopped = True
        self.kill()

    # ── test controls ──

    def feed(self, data):
        if isinstance(data, dict):
            data = json.dumps(data) + "\n"
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.on_data(self, data)

    def exit(self, code=1):
        self._alive = False
        self.on_exit(self, code)

    def requests(self, method=None):
        return [m for m in self.sent if "id" in m and (method is None or m["method"] == method)]

    @property
    def last_request(self):
        return self.requests()[-1]


class FakeTransportFactory:
    def __init__(self):
        self.created = []
        self.spawn_error = None
        self.initialize_reply = None

    def __call__(self, command, env=None):
        transport = FakeTransport(
            command,
            env,
            spawn_error=self.spawn_error,
            initialize_reply=self.initialize_reply,
        )
        self.created.append(transport)
        return transport

    @property
    def current(self):
        return self.created[-1]


def make_config(**overrides):
    settings = dict(
        command=("fake-blender-mcp",),
        startup_grace=0.0,
        reconnect_delay=0.0,
        request_timeout=5.0,
        max_reconnect_attempts=3,
    )
    settings.update(overrides)
    return GatewayConfig(**settings)


async def start_call(coro):
    """Schedule a client call and let it run until it awaits its response."""
    task = asyncio.ensure_future(coro)
    await asyncio.sleep(0)
    return task


async def settle(rounds=5):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def factory():
    return FakeTransportFactory()


@pytest.fixture
def make_client(factory):
    def _make(**overrides):
        return BlenderMCPClient(make_config(**overrides), transport_factory=factory)
    return _make


@pytest.fixture
def mock_server_config():
    """Config that spawns the bundled mock Blender MCP server."""
    pythonpath = os.pathsep.join(filter(None, [str(ROOT), os.environ.get("PYTHONPATH")]))
    return GatewayConfig(
        command=(sys.executable, "-u", "-m", "blender_gateway.servers.mock_blender"),
        startup_grace=0.0,
        reconnect_delay=0.1,
        request_timeout=10.0,
        max_reconnect_attempts=2,
        extra_env={"PYTHONPATH": pythonpath, "MOCK_BLENDER_TEST_TOOLS": "1"},
    )
