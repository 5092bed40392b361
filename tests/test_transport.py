import asyncio
import json
import sys

import pytest

from blender_gateway.errors import NotRunningError
from blender_gateway.transport import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    LineBuffer,
    StdioTransport,
    parse_message,
)

ECHO_SERVER = [
    sys.executable,
    "-u",
    "-c",
    "import sys\n"
    "sys.stderr.write('echo server ready\\n')\n"
    "for line in sys.stdin:\n"
    "    sys.stdout.write(line)\n",
]


def test_request_is_one_json_line():
    line = JsonRpcRequest(method="tools/list", params={}, id=1).to_line()

    assert line.endswith("\n") and line.count("\n") == 1
    assert json.loads(line) == {"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}}


def test_notification_has_no_id():
    message = json.loads(JsonRpcNotification(method="notifications/initialized").to_line())

    assert message == {"jsonrpc": "2.0", "method": "notifications/initialized"}


def test_response_from_dict():
    ok = JsonRpcResponse.from_dict({"id": 3, "result": {"tools": []}})
    failed = JsonRpcResponse.from_dict({"id": 4, "error": {"message": "boom"}})

    assert not ok.is_error and ok.result == {"tools": []}
    assert failed.is_error and failed.error["message"] == "boom"


def test_parse_message_rejects_non_objects():
    assert parse_message('{"id": 1}') == {"id": 1}
    with pytest.raises(ValueError):
        parse_message("[1, 2]")
    with pytest.raises(ValueError):
        parse_message("{oops")


def test_line_buffer_keeps_partial_line():
    buffer = LineBuffer()

    assert buffer.feed(b'{"id":9,"resu') == []
    assert buffer.pending == '{"id":9,"resu'
    assert buffer.feed(b'lt":{}}\n') == ['{"id":9,"result":{}}']
    assert buffer.pending == ""


def test_line_buffer_splits_many_lines_and_skips_blanks():
    buffer = LineBuffer()

    lines = buffer.feed(b'{"a":1}\n\n  \r\n{"b":2}\r\n{"c":')

    assert lines == ['{"a":1}', '{"b":2}']
    assert buffer.pending == '{"c":'


def test_line_buffer_handles_split_utf8_sequence():
    buffer = LineBuffer()
    data = '{"text":"✓"}\n'.encode("utf-8")
    cut = data.index(b"\xe2") + 1

    assert buffer.feed(data[:cut]) == []
    assert buffer.feed(data[cut:]) == ['{"text":"✓"}']


def test_line_buffer_clear():
    buffer = LineBuffer()
    buffer.feed(b"partial")
    buffer.clear()

    assert buffer.pending == ""
    assert buffer.feed(b"next\n") == ["next"]


def test_line_buffer_joins_long_line_once():
    buffer = LineBuffer()
    fragment = "x" * 4096

    for _ in range(256):
        assert buffer.feed(fragment.encode("utf-8")) == []
    assert len(buffer._fragments) == 256

    lines = buffer.feed(b'\n{"id":2}\ntail')

    assert lines == [fragment * 256, '{"id":2}']
    assert buffer._fragments == ["tail"]


@pytest.mark.asyncio
async def test_stdio_transport_round_trip():
    received = []
    exited = asyncio.Event()
    codes = []
    got_line = asyncio.Event()

    def on_data(transport, chunk):
        received.append(chunk)
        if b"\n" in b"".join(received):
            got_line.set()

    def on_exit(transport, code):
        codes.append(code)
        exited.set()

    transport = StdioTransport(ECHO_SERVER, on_data=on_data, on_exit=on_exit)
    await transport.start()
    assert transport.is_alive()
    assert transport.pid is not None

    transport.send(JsonRpcRequest(method="ping", params={}, id=1).to_line())
    await asyncio.wait_for(got_line.wait(), timeout=10)
    assert json.loads(b"".join(received))["method"] == "ping"

    await transport.stop()
    await asyncio.wait_for(exited.wait(), timeout=10)
    assert not transport.is_alive()
    assert len(codes) == 1

    with pytest.raises(NotRunningError):
        transport.send("{}\n")


@pytest.mark.asyncio
async def test_stdio_transport_kill_reports_exit():
    exited = asyncio.Event()
    transport = StdioTransport(ECHO_SERVER, on_exit=lambda t, code: exited.set())
    await transport.start()

    transport.kill()

    assert transport.killed
    assert not transport.is_alive()
    await asyncio.wait_for(exited.wait(), timeout=10)


@pytest.mark.asyncio
async def test_stdio_transport_spawn_failure_raises_oserror():
    transport = StdioTransport(["/nonexistent/blender-mcp-binary"])

    with pytest.raises(OSError):
        await transport.start()
    assert not transport.is_alive()


@pytest.mark.asyncio
async def test_stdio_transport_stop_joins_output_pumps():
    exited = []
    transport = StdioTransport(ECHO_SERVER, on_exit=lambda t, code: exited.append(code))
    await transport.start()

    await transport.stop()

    assert len(exited) == 1
    assert transport._tasks == []
    await transport.stop()
    assert len(exited) == 1
