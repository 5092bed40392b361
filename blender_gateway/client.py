"""
Asynchronous MCP client for a blender-mcp subprocess.

    ┌──────────────┐   JSON-RPC lines   ┌──────────────┐    TCP    ┌─────────┐
    │ BlenderMCP-  │ ── stdin/stdout ── │  blender-mcp │ ───────── │ Blender │
    │ Client       │                    │ (subprocess) │           │  addon  │
    └──────────────┘                    └──────────────┘           └─────────┘

The client owns a single subprocess and correlates responses to requests by
numeric id, so responses may arrive in any order. Unsolicited messages are
handed to notification subscribers. If the subprocess exits unexpectedly,
calls in flight fail with ConnectionLostError and a bounded reconnect loop
respawns it.

Usage:
    client = BlenderMCPClient(GatewayConfig.from_env())
    await client.connect()
    result = await client.execute_blender_code("import bpy; print(bpy.app.version)")
    print(extract_text(result))
    await client.aclose()
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from blender_gateway.config import PROTOCOL_VERSION, GatewayConfig
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
from blender_gateway.transport import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    LineBuffer,
    StdioTransport,
    parse_message,
)

logger = logging.getLogger(__name__)

NotificationCallback = Callable[[dict[str, Any]], None]
TransportFactory = Callable[[Sequence[str], "dict[str, str] | None"], StdioTransport]


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


@dataclass
class PendingCall:
    """One in-flight request, settled exactly once by response or deadline."""
    id: int
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


class BlenderMCPClient:
    """
    JSON-RPC client that speaks MCP to a blender-mcp subprocess over stdio.

    All state is private to the instance; independent clients never
    interfere with each other.
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        """
        Args:
            config: Gateway settings (defaults to GatewayConfig.from_env()).
            transport_factory: Builds the transport for a command and
                               environment. Defaults to StdioTransport.
        """
        self.config = config or GatewayConfig.from_env()
        self._transport_factory = transport_factory or StdioTransport
        self._transport: StdioTransport | None = None
        self._state = ConnectionState.DISCONNECTED
        self._request_id = 0
        self._pending: dict[int, PendingCall] = {}
        self._buffer = LineBuffer()
        self._subscribers: list[NotificationCallback] = []
        self._connect_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self.reconnect_attempts = 0
        self.server_info: Any = None

    # ── State ─────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def __aenter__(self) -> "BlenderMCPClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Lifecycle ─────────────────────────────────────────

    async def connect(self) -> None:
        """
        Spawn the MCP server and complete the initialize handshake.

        Idempotent: returns at once when already connected, and concurrent
        callers share the attempt already in flight.
        """
        if self.is_connected:
            logger.debug("Already connected to MCP server")
            return

        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.get_running_loop().create_task(self._establish())
            self._connect_task.add_done_callback(self._connect_finished)

        task = self._connect_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise DisconnectedError("MCP client disconnected while connecting") from None
            raise

    async def ensure_connected(self) -> None:
        """Connect on demand; used as the guard in front of every tool call."""
        if not self.is_connected:
            await self.connect()

    def disconnect(self) -> None:
        """Kill the subprocess and fail every pending call with DisconnectedError."""
        self._cancel_background()
        transport = self._detach()
        if transport is not None:
            transport.kill()
        self._fail_pending(DisconnectedError("MCP client disconnected"))
        logger.info("MCP Client disconnected")

    async def aclose(self) -> None:
        """Like disconnect(), but terminates the subprocess gracefully and waits for it."""
        self._cancel_background()
        transport = self._detach()
        self._fail_pending(DisconnectedError("MCP client disconnected"))
        if transport is not None:
            await transport.stop()
        logger.info("MCP Client disconnected")

    async def _establish(self) -> None:
        self._state = ConnectionState.CONNECTING
        logger.info("Starting MCP server process...")

        transport = self._transport_factory(self.config.command, self.config.subprocess_env())
        transport.on_data = self._on_data
        transport.on_exit = self._on_exit
        self._buffer.clear()

        try:
            await transport.start()
        except OSError as e:
            self._state = ConnectionState.DISCONNECTED
            logger.error(f"Failed to spawn MCP process: {e}")
            raise SpawnError(f"Failed to spawn MCP process: {e}") from e
        except BaseException:
            self._state = ConnectionState.DISCONNECTED
            raise

        self._transport = transport

        try:
            # Give the server time to reach Blender before the handshake.
            await asyncio.sleep(self.config.startup_grace)
            self.server_info = await self._initialize()
        except GatewayError as e:
            logger.error(f"Failed to initialize MCP: {e.message}")
            if self._transport is transport:
                self._detach()
                await transport.stop()
            self._state = ConnectionState.DISCONNECTED
            raise HandshakeError(f"MCP handshake failed: {e.message}") from e
        except asyncio.CancelledError:
            if self._transport is transport:
                self._detach()
                transport.kill()
            raise

        self._state = ConnectionState.READY
        self.reconnect_attempts = 0
        logger.info("MCP Client connected and initialized")

    async def _initialize(self) -> Any:
        logger.info("Initializing MCP protocol...")
        result = await self.send_request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {
                "roots": {"listChanged": True},
                "sampling": {},
            },
            "clientInfo": {
                "name": self.config.client_name,
                "version": self.config.client_version,
            },
        })

        self._send_line(JsonRpcNotification(method="notifications/initialized").to_line())

        server_info = result.get("serverInfo") if isinstance(result, dict) else result
        logger.info(f"MCP initialized: {server_info}")
        return server_info

    def _connect_finished(self, task: asyncio.Task) -> None:
        if self._connect_task is task:
            self._connect_task = None
        if not task.cancelled():
            # Marks the exception retrieved when nobody awaited the attempt.
            task.exception()

    def _on_exit(self, transport: StdioTransport, returncode: int | None) -> None:
        if transport is not self._transport:
            return

        logger.warning(f"MCP process closed with code {returncode}")
        self._detach()
        self._fail_pending(ConnectionLostError(f"MCP process exited with code {returncode}"))

        if self._reconnect_task is not None:
            return
        if self.reconnect_attempts >= self.config.max_reconnect_attempts:
            logger.error(
                f"MCP process exited; giving up after "
                f"{self.config.max_reconnect_attempts} reconnect attempts"
            )
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            while self.reconnect_attempts < self.config.max_reconnect_attempts:
                self.reconnect_attempts += 1
                logger.info(
                    f"Attempting to reconnect "
                    f"({self.reconnect_attempts}/{self.config.max_reconnect_attempts})..."
                )
                await asyncio.sleep(self.config.reconnect_delay)
                try:
                    await self.connect()
                except DisconnectedError:
                    logger.info("Reconnect abandoned: client disconnected")
                    return
                except GatewayError as e:
                    logger.error(f"Reconnect attempt {self.reconnect_attempts} failed: {e.message}")
                    continue
                if self.is_connected:
                    return
                # The respawned process exited before this loop resumed.
                logger.warning("MCP process exited right after reconnecting")
            logger.error("MCP reconnect attempts exhausted; call connect() to retry")
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _detach(self) -> StdioTransport | None:
        transport, self._transport = self._transport, None
        self._state = ConnectionState.DISCONNECTED
        self._buffer.clear()
        return transport

    def _cancel_background(self) -> None:
        for task in (self._connect_task, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()
        self._connect_task = None
        self._reconnect_task = None

    # ── Inbound ───────────────────────────────────────────

    def _on_data(self, transport: StdioTransport, chunk: bytes) -> None:
        if transport is not self._transport:
            return
        for line in self._buffer.feed(chunk):
            self._handle_line(line)

    def _handle_line(self, line: str) -> None:
        try:
            message = parse_message(line)
        except ValueError as e:
            logger.error(f"Failed to parse JSON: {e}")
            logger.error(f"Raw data: {line[:500]}")
            return
        self._dispatch(message)

    def _dispatch(self, message: dict[str, Any]) -> None:
        message_id = message.get("id")
        call = None
        if isinstance(message_id, int) and not isinstance(message_id, bool):
            call = self._pending.pop(message_id, None)

        if call is not None:
            call.timer.cancel()
            if call.future.done():
                return
            response = JsonRpcResponse.from_dict(message)
            if response.is_error:
                call.future.set_exception(RemoteError.from_payload(response.error))
            else:
                call.future.set_result(response.result)
        elif "method" in message:
            self._emit_notification(message)
        else:
            logger.debug(f"Ignoring response for unknown request id {message_id!r}")

    # ── Notifications ─────────────────────────────────────

    def subscribe(self, callback: NotificationCallback) -> Callable[[], None]:
        """Register a callback for server notifications. Returns an unsubscribe function."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: NotificationCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _emit_notification(self, message: dict[str, Any]) -> None:
        logger.debug(f"MCP notification: {message.get('method')}")
        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception:
                logger.exception(f"Notification subscriber {callback!r} failed")

    # ── Outbound ──────────────────────────────────────────

    async def send_request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """
        Send a JSON-RPC request and wait for its result.

        Raises:
            NotRunningError: no live subprocess (nothing is written).
            RemoteError: the server answered with an error.
            RequestTimeoutError: no answer within config.request_timeout.
            ConnectionLostError: the subprocess exited or was disconnected.
        """
        transport = self._transport
        if transport is None or transport.killed or not transport.is_alive():
            raise NotRunningError("MCP process not running")

        self._request_id += 1
        request = JsonRpcRequest(method=method, params=params or {}, id=self._request_id)

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = loop.call_later(self.config.request_timeout, self._expire, request.id)
        call = PendingCall(id=request.id, method=method, future=future, timer=timer)
        self._pending[request.id] = call

        try:
            transport.send(request.to_line())
        except GatewayError:
            self._discard(request.id)
            raise
        except OSError as e:
            self._discard(request.id)
            raise NotRunningError(f"MCP process not running: {e}") from e

        try:
            return await future
        except asyncio.CancelledError:
            self._discard(request.id)
            raise

    def _send_line(self, line: str) -> None:
        if self._transport is None:
            raise NotRunningError("MCP process not running")
        self._transport.send(line)

    def _expire(self, request_id: int) -> None:
        call = self._pending.pop(request_id, None)
        if call is None or call.future.done():
            return
        logger.warning(f"MCP request {request_id} ({call.method}) timed out")
        call.future.set_exception(RequestTimeoutError(call.method, self.config.request_timeout))

    def _discard(self, request_id: int) -> None:
        call = self._pending.pop(request_id, None)
        if call is not None:
            call.timer.cancel()

    def _fail_pending(self, error: GatewayError) -> None:
        pending, self._pending = self._pending, {}
        for call in pending.values():
            call.timer.cancel()
            if not call.future.done():
                call.future.set_exception(error)

    # ── Tools ─────────────────────────────────────────────

    async def list_tools(self) -> Any:
        return await self.send_request("tools/list", {})

    async def call_tool(self, name: str, args: dict[str, Any] | None = None) -> Any:
        return await self.send_request("tools/call", {
            "name": name,
            "arguments": args or {},
        })

    async def execute_blender_code(self, code: str) -> Any:
        return await self.call_tool("execute_blender_code", {"code": code})

    async def get_viewport_screenshot(self, max_size: int = 800) -> Any:
        return await self.call_tool("get_viewport_screenshot", {"max_size": max_size})

    async def get_scene_info(self) -> Any:
        return await self.call_tool("get_scene_info", {})

    async def search_sketchfab(
        self,
        query: str,
        categories: str | None = None,
        count: int = 20,
        downloadable: bool = True,
    ) -> Any:
        return await self.call_tool("search_sketchfab_models", {
            "query": query,
            "categories": categories,
            "count": count,
            "downloadable": downloadable,
        })

    async def download_sketchfab_model(self, uid: str) -> Any:
        return await self.call_tool("download_sketchfab_model", {"uid": uid})

    async def generate_hyper3d_model(
        self,
        text_prompt: str,
        bbox_condition: list[float] | None = None,
    ) -> Any:
        return await self.call_tool("generate_hyper3d_model_via_text", {
            "text_prompt": text_prompt,
            "bbox_condition": bbox_condition,
        })

    async def set_texture(self, object_name: str, texture_id: str) -> Any:
        return await self.call_tool("set_texture", {
            "object_name": object_name,
            "texture_id": texture_id,
        })

    async def get_hunyuan3d_status(self) -> Any:
        return await self.call_tool("get_hunyuan3d_status", {})

    async def get_polyhaven_status(self) -> Any:
        return await self.call_tool("get_polyhaven_status", {})

    async def get_sketchfab_status(self) -> Any:
        return await self.call_tool("get_sketchfab_status", {})

    async def get_integration_status(self) -> dict[str, Any]:
        """Query every integration at once; a failing check becomes {"error": message}."""
        names = ("hunyuan3d", "polyhaven", "sketchfab")
        results = await asyncio.gather(
            self.get_hunyuan3d_status(),
            self.get_polyhaven_status(),
            self.get_sketchfab_status(),
            return_exceptions=True,
        )
        status = {}
        for name, result in zip(names, results):
            if isinstance(result, GatewayError):
                status[name] = {"error": result.message}
            elif isinstance(result, BaseException):
                raise result
            else:
                status[name] = result
        return status
