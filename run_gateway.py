"""
Run Gateway — drive Blender from the command line through blender-mcp.

This script:
1. Spawns the MCP server (``uvx blender-mcp`` unless BLENDER_MCP_COMMAND says otherwise)
2. Performs the MCP handshake
3. Runs one action (list tools, execute code, prompt, screenshot, ...)
4. Prints the result as JSON and shuts the server down

Usage:
    # What can the server do?
    python run_gateway.py --list-tools

    # Execute a script (or - for stdin)
    python run_gateway.py --execute create_cube.py
    echo "import bpy; print(len(bpy.data.objects))" | python run_gateway.py --execute -

    # Scene, screenshot and integration status
    python run_gateway.py --scene
    python run_gateway.py --screenshot viewport.png --max-size 1024
    python run_gateway.py --status

    # Natural-language prompt (needs the model provider's API key)
    python run_gateway.py --prompt "create a red cube" --model anthropic:claude-sonnet-4-5-20250929

    # Any tool by name
    python run_gateway.py --call search_sketchfab_models --args '{"query": "chair"}'

    # Without Blender
    BLENDER_MCP_COMMAND="python -m blender_gateway.servers.mock_blender" python run_gateway.py --scene
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import signal
import sys
from pathlib import Path

from blender_gateway.client import BlenderMCPClient
from blender_gateway.config import GatewayConfig
from blender_gateway.errors import GatewayError
from blender_gateway.results import extract_image, extract_text, is_error_result

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def read_code(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run(args: argparse.Namespace, config: GatewayConfig) -> int:
    client = BlenderMCPClient(config)

    # Graceful shutdown on Ctrl+C / SIGTERM
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, client.disconnect)
        except (NotImplementedError, RuntimeError):
            pass

    print("Starting Blender MCP server...", file=sys.stderr)
    try:
        await client.connect()
    except GatewayError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        if args.list_tools:
            listing = await client.list_tools()
            tools = listing.get("tools", []) if isinstance(listing, dict) else listing
            if args.verbose:
                from blender_gateway.bridge import tool_catalog
                print(tool_catalog(tools))
            else:
                print_json([t.get("name") for t in tools])

        elif args.execute:
            result = await client.execute_blender_code(read_code(args.execute))
            print_json({"success": not is_error_result(result), "output": extract_text(result)})

        elif args.scene:
            print_json(await client.get_scene_info())

        elif args.screenshot:
            result = await client.get_viewport_screenshot(args.max_size)
            data = extract_image(result)
            if not data:
                print(f"Error: no image in response: {extract_text(result)}", file=sys.stderr)
                return 1
            Path(args.screenshot).write_bytes(base64.b64decode(data))
            print_json({"success": True, "path": args.screenshot})

        elif args.status:
            print_json(await client.get_integration_status())

        elif args.prompt:
            from blender_gateway.prompt import BlenderCodeGenerator
            generator = BlenderCodeGenerator(args.model or config.codegen_model)
            outcome = await generator.run_prompt(client, args.prompt)
            print_json({
                "success": not is_error_result(outcome.result),
                "code": outcome.code,
                "output": extract_text(outcome.result),
            })

        elif args.call:
            print_json(await client.call_tool(args.call, json.loads(args.args)))

    except GatewayError as e:
        print(f"Error ({e.code}): {e}", file=sys.stderr)
        return 1
    finally:
        await client.aclose()
        print("MCP server stopped.", file=sys.stderr)

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Drive Blender through a blender-mcp subprocess.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_gateway.py --list-tools
  python run_gateway.py --execute script.py
  python run_gateway.py --prompt "add a light above the cube"
        """,
    )
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--list-tools", action="store_true", help="List the server's tools and exit")
    action.add_argument("--execute", "-e", metavar="FILE", help="Execute a Python file in Blender (- for stdin)")
    action.add_argument("--scene", action="store_true", help="Print scene information")
    action.add_argument("--screenshot", metavar="OUT", help="Save a viewport screenshot to OUT")
    action.add_argument("--status", action="store_true", help="Show integration status (Hunyuan3D, Polyhaven, Sketchfab)")
    action.add_argument("--prompt", "-p", type=str, help="Generate code from a prompt and execute it")
    action.add_argument("--call", metavar="TOOL", help="Call any tool by name")
    parser.add_argument("--args", default="{}", help="JSON arguments for --call")
    parser.add_argument("--max-size", type=int, default=800, help="Screenshot size limit in pixels")
    parser.add_argument("--model", "-m", type=str, default=None, help="Chat model for --prompt (e.g., anthropic:claude-sonnet-4-5-20250929)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = GatewayConfig.from_env()
    except ValueError as e:
        parser.error(str(e))

    return asyncio.run(run(args, config))


if __name__ == "__main__":
    sys.exit(main())
