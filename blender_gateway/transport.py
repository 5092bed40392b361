"""
Stdio transport for the blender-mcp server.

The MCP server runs as a child process. We write JSON-RPC requests to its
stdin and receive responses and notifications on its stdout, one message
per line. Unlike a blocking readline loop, output is pumped by a background
task and handed to the owner as raw chunks: message boundaries are not
aligned with reads, so framing is done by ``LineBuffer``.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from blender_gateway.errors import NotRunningError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request."""
    method: str
    params: dict[str, Any]
    id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }

    def to_line(self) -> str:
        return json.dumps(self.to_dict()) + "\n"


@dataclass
class JsonRpcNotification:
    """JSON-RPC 2.0 notification (no id, no response expected)."""
    method: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message

    def to_line(self) -> str:
        return json.dumps(self.to_dict()) + "\n"


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: Any
    result: Any = None
    error: Any = None

    @classmethod
    def from_dict(cls, message: dict[str, Any]) -> "JsonRpcResponse":
        return cls(
            id=message.get("id"),
            result=message.get("result"),
            error=message.get("error"),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None


def parse_message(line: str) -> dict[str, Any]:
    """Decode one protocol line. Raises ValueError for anything but a JSON object."""
    message = json.loads(line)
    if not isinstance(message, dict):
        raise ValueError(f"expected a JSON object, got {type(message).__name__}")
    return message


@dataclass
class LineBuffer:
    """
    Accumulates stdout chunks and yields complete, non-blank lines.

    An unterminated line is kept as a list of fragments and joined once its
    newline arrives, so only the newest chunk is ever scanned. Bytes are
    decoded incrementally so a chunk may end inside a multi-byte UTF-8
    sequence.
    """
    _fragments: list[str] = field(default_factory=list, repr=False)
    _decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace"),
        repr=False,
    )

    @property
    def pending(self) -> str:
        """The unterminated tail retained after the last ``feed``."""
        return "".join(self._fragments)

    def feed(self, chunk: bytes | str) -> list[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if "\n" not in chunk:
            if chunk:
                self._fragments.append(chunk)
            return []
        head, *lines, tail = chunk.split("\n")
        self._fragments.append(head)
        first = "".join(self._fragments)
        self._fragments = [tail] if tail else []
        return [line.strip() for line in (first, *lines) if line.strip()]

    def clear(self) -> None:
        self._fragments = []
        self._decoder.reset()


DataCallback = Callable[["StdioTransport", bytes], None]
ExitCallback = Callable[["StdioTransport", "int | None"], None]


class StdioTransport:
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    ``on_data`` receives every stdout chunk; ``on_exit`` fires once, after
    stdout hits EOF and the process has been reaped. stderr is never parsed,
    only logged.
    """

    def __init__(
        self,
        command: Sequence[str],
        env: dict[str, str] | None = None,
        on_data: DataCallback | None = None,
        on_exit: ExitCallback | None = None,
    ):
        """
        Args:
            command: Command to launch the MCP server process.
                     e.g., ["uvx", "blender-mcp"]
            env: Environment for the subprocess (None inherits ours).
            on_data: Called with each raw stdout chunk.
            on_exit: Called with the return code once the process is gone.
        """
        self.command = list(command)
        self.env = env
        self.on_data = on_data
        self.on_exit = on_exit
        self._process: asyncio.subprocess.Process | None = None
        self._killed = False
        self._tasks: list[asyncio.Task] = []

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def killed(self) -> bool:
        return self._killed

    async def start(self) -> None:
        """Launch the MCP server subprocess. Raises OSError if it cannot be spawned."""
        if self.is_alive():
            raise RuntimeError("Transport already running")

        logger.info(f"Starting stdio transport: {' '.join(self.command)}")
        self._process = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self.env,
        )
        self._killed = False
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._pump_stdout()),
            loop.create_task(self._pump_stderr()),
        ]

    def is_alive(self) -> bool:
        """Check if the subprocess is running and has not been killed."""
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._killed
        )

    def send(self, line: str) -> None:
        """Write one newline-terminated message to the subprocess stdin."""
        if not self.is_alive() or self._process.stdin is None:
            raise NotRunningError("MCP process not running")
        self._process.stdin.write(line.encode("utf-8"))

    def kill(self) -> None:
        """Forcefully terminate the subprocess without waiting for it."""
        if self._process is None or self._killed:
            return
        self._killed = True
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def stop(self, timeout: float = 5.0) -> None:
        """Terminate the subprocess, escalating to kill after ``timeout``."""
        if self._process is None:
            return
        process = self._process
        if process.returncode is None and not self._killed:
            self._killed = True
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass
        elif process.returncode is None:
            await process.wait()
        await self._join_pumps(timeout)
        logger.info("Stdio transport stopped")

    async def _join_pumps(self, timeout: float) -> None:
        """Wait for the output pumps to drain; cancel any still blocked after ``timeout``."""
        tasks = [t for t in self._tasks if t is not asyncio.current_task()]
        self._tasks = []
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            # A grandchild can keep the pipe open after the server is gone.
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Stdio pump failed: {task.exception()!r}")

    async def _pump_stdout(self) -> None:
        stdout = self._process.stdout
        try:
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                if self.on_data is not None:
                    self.on_data(self, chunk)
        finally:
            returncode = await self._process.wait()
            logger.info(f"MCP process exited with code {returncode}")
            if self.on_exit is not None:
                self.on_exit(self, returncode)

    async def _pump_stderr(self) -> None:
        stderr = self._process.stderr
        while True:
            line = await stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.warning(f"MCP stderr: {text}")
