"""
Mock Blender MCP server — stands in for ``uvx blender-mcp`` without Blender.

Exposes the same tool names and argument shapes as blender-mcp, backed by
canned scene data. ``execute_blender_code`` really runs the code (without
``bpy``) and returns what it printed.

Launch:
    python -m blender_gateway.servers.mock_blender

Use it from the gateway:
    BLENDER_MCP_COMMAND="python -m blender_gateway.servers.mock_blender" python run_gateway.py --scene

Test manually:
    echo '{"jsonrpc":"2.0","method":"tools/list","params":{},"id":1}' | python -m blender_gateway.servers.mock_blender

Set MOCK_BLENDER_TEST_TOOLS=1 to also expose ``mock_exit`` and ``mock_notify``,
which crash the server and emit a notification on demand.
"""

import contextlib
import io
import json
import logging
import os
import sys
import traceback

from blender_gateway.server import StdioToolServer, ToolHandler

logger = logging.getLogger(__name__)

# 1x1 PNG
PLACEHOLDER_PNG = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

SCENE = {
    "name": "Scene",
    "object_count": 3,
    "objects": [
        {"name": "Cube", "type": "MESH", "location": [0.0, 0.0, 0.0]},
        {"name": "Light", "type": "LIGHT", "location": [4.08, 1.0, 5.9]},
        {"name": "Camera", "type": "CAMERA", "location": [7.36, -6.93, 4.96]},
    ],
    "materials_count": 1,
}


class ExecuteBlenderCodeTool(ToolHandler):
    name = "execute_blender_code"
    description = "Execute arbitrary Python code in Blender."
    parameters = {
        "code": {"type": "string", "description": "The Python code to execute"},
    }
    required = ["code"]

    def handle(self, params: dict) -> str:
        code = params.get("code", "")
        stdout = io.StringIO()
        namespace = {"__builtins__": __builtins__}
        try:
            with contextlib.redirect_stdout(stdout):
                exec(code, namespace)
        except Exception:
            raise RuntimeError(traceback.format_exc(limit=1).strip())
        return f"Code executed successfully: {stdout.getvalue()}"


class SceneInfoTool(ToolHandler):
    name = "get_scene_info"
    description = "Get detailed information about the current Blender scene."

    def handle(self, params: dict) -> dict:
        return SCENE


class ViewportScreenshotTool(ToolHandler):
    name = "get_viewport_screenshot"
    description = "Capture a screenshot of the current Blender 3D viewport."
    parameters = {
        "max_size": {"type": "integer", "description": "Maximum size in pixels for the largest dimension"},
    }

    def handle(self, params: dict) -> list:
        return [{"type": "image", "data": PLACEHOLDER_PNG, "mimeType": "image/png"}]


class SearchSketchfabTool(ToolHandler):
    name = "search_sketchfab_models"
    description = "Search for models on Sketchfab."
    parameters = {
        "query": {"type": "string", "description": "Text to search for"},
        "categories": {"type": "string", "description": "Comma-separated categories"},
        "count": {"type": "integer", "description": "Maximum number of results"},
        "downloadable": {"type": "boolean", "description": "Only downloadable models"},
    }
    required = ["query"]

    def handle(self, params: dict) -> dict:
        count = int(params.get("count") or 20)
        models = [
            {"uid": f"mock-{i}", "name": f"{params['query']} {i}", "isDownloadable": True}
            for i in range(min(count, 3))
        ]
        return {"query": params["query"], "results": models}


class DownloadSketchfabTool(ToolHandler):
    name = "download_sketchfab_model"
    description = "Download and import a Sketchfab model by its UID."
    parameters = {"uid": {"type": "string", "description": "The unique identifier of the model"}}
    required = ["uid"]

    def handle(self, params: dict) -> str:
        return f"Successfully imported model {params['uid']}"


class Hyper3DTextTool(ToolHandler):
    name = "generate_hyper3d_model_via_text"
    description = "Generate a 3D asset with Hyper3D from a text description."
    parameters = {
        "text_prompt": {"type": "string", "description": "Short description of the model"},
        "bbox_condition": {"type": "array", "description": "Optional [length, width, height] ratio"},
    }
    required = ["text_prompt"]

    def handle(self, params: dict) -> dict:
        return {"submit_time": True, "task_uuid": "mock-task", "subscription_key": "mock-key"}


class SetTextureTool(ToolHandler):
    name = "set_texture"
    description = "Apply a previously downloaded Polyhaven texture to an object."
    parameters = {
        "object_name": {"type": "string", "description": "Name of the object"},
        "texture_id": {"type": "string", "description": "ID of the Polyhaven texture"},
    }
    required = ["object_name", "texture_id"]

    def handle(self, params: dict) -> str:
        names = [obj["name"] for obj in SCENE["objects"]]
        if params["object_name"] not in names:
            raise ValueError(f"Object not found: {params['object_name']}")
        return f"Successfully applied texture '{params['texture_id']}' to {params['object_name']}"


class StatusTool(ToolHandler):
    def __init__(self, name: str, enabled: bool):
        self.name = name
        self.description = f"Check whether the {name.split('_')[1]} integration is enabled."
        self.enabled = enabled

    def handle(self, params: dict) -> str:
        integration = self.name.split("_")[1]
        if self.enabled:
            return f"{integration} integration is enabled and ready to use."
        return f"{integration} integration is currently disabled."


class ExitTool(ToolHandler):
    """Terminate the server mid-session; used to exercise reconnects."""
    name = "mock_exit"
    description = "Exit the mock server immediately with the given code."
    parameters = {"code": {"type": "integer", "description": "Process exit code"}}

    def handle(self, params: dict) -> None:
        sys.stdout.flush()
        os._exit(int(params.get("code", 1)))


class NotifyTool(ToolHandler):
    """Emit a server notification before answering."""
    name = "mock_notify"
    description = "Send a notifications/message to the client, then return."
    parameters = {"message": {"type": "string", "description": "Notification payload"}}

    def handle(self, params: dict) -> str:
        notification = {
            "jsonrpc": "2.0",
            "method": "notifications/message",
            "params": {"level": "info", "data": params.get("message", "")},
        }
        sys.stdout.write(json.dumps(notification) + "\n")
        sys.stdout.flush()
        return "notified"


TEST_TOOLS_ENV = "MOCK_BLENDER_TEST_TOOLS"


def build_server(test_tools: bool | None = None) -> StdioToolServer:
    """Build the mock server; ``mock_exit``/``mock_notify`` only when $MOCK_BLENDER_TEST_TOOLS=1."""
    if test_tools is None:
        test_tools = os.environ.get(TEST_TOOLS_ENV) == "1"
    server = StdioToolServer("mock-blender-mcp")
    for handler in (
        ExecuteBlenderCodeTool(),
        SceneInfoTool(),
        ViewportScreenshotTool(),
        SearchSketchfabTool(),
        DownloadSketchfabTool(),
        Hyper3DTextTool(),
        SetTextureTool(),
        StatusTool("get_hunyuan3d_status", enabled=False),
        StatusTool("get_polyhaven_status", enabled=True),
        StatusTool("get_sketchfab_status", enabled=True),
    ):
        server.register(handler)
    if test_tools:
        server.register(ExitTool())
        server.register(NotifyTool())
    return server


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr, format="%(levelname)s: %(message)s")
    logger.info(
        f"Mock Blender MCP for {os.environ.get('BLENDER_HOST', 'localhost')}:"
        f"{os.environ.get('BLENDER_PORT', '9876')}"
    )
    build_server().run()
