"""
Bridge between the Blender MCP client and LangChain.

This module converts the tools advertised by the blender-mcp server into
LangChain tools, so an agent can drive Blender directly.

Usage:
    from blender_gateway.bridge import load_langchain_tools

    await client.connect()
    tools = await load_langchain_tools(client)
    agent = create_agent(model, tools=tools)
"""

from __future__ import annotations

import json
from typing import Any

from langchain_core.tools import StructuredTool

from blender_gateway.client import BlenderMCPClient
from blender_gateway.results import extract_image, extract_text, is_error_result


def mcp_to_langchain_tool(
    client: BlenderMCPClient,
    tool_schema: dict[str, Any],
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that wraps an MCP tools/call.

    The returned tool, when invoked by an agent, sends a JSON-RPC request to
    the blender-mcp subprocess and returns the text content of the result.

    Args:
        client: The connected BlenderMCPClient
        tool_schema: One entry of the server's tools/list result
        description_override: Optional override for the tool description

    Returns:
        A LangChain StructuredTool that proxies calls to the MCP server.
    """
    tool_name = tool_schema["name"]
    description = description_override or tool_schema.get("description") or f"MCP tool: {tool_name}"
    args_schema = tool_schema.get("inputSchema") or {"type": "object", "properties": {}}

    async def _call_mcp(**kwargs: Any) -> str:
        """Proxy call to the MCP server."""
        try:
            result = await client.call_tool(tool_name, kwargs)
        except Exception as e:
            return f"Error calling {tool_name}: {e}"

        text = extract_text(result)
        if is_error_result(result):
            return f"Error calling {tool_name}: {text}"
        if text:
            return text
        if extract_image(result):
            return f"{tool_name} returned an image"
        return json.dumps(result, indent=2)

    return StructuredTool.from_function(
        coroutine=_call_mcp,
        name=tool_name,
        description=description,
        args_schema=args_schema,
    )


async def load_langchain_tools(client: BlenderMCPClient) -> list[StructuredTool]:
    """Discover every tool on the server and wrap it for LangChain."""
    await client.ensure_connected()
    listing = await client.list_tools()
    schemas = listing.get("tools", []) if isinstance(listing, dict) else listing
    return [mcp_to_langchain_tool(client, schema) for schema in schemas or []]


def _auto_prompt_instructions(schema: dict) -> str:
    """Generate prompt instructions from an MCP tool schema."""
    name = schema.get("name", "unknown")
    description = schema.get("description", "")
    input_schema = schema.get("inputSchema") or {}
    params = input_schema.get("properties", {})
    required = set(input_schema.get("required", []))

    lines = [f"## Tool: {name}", description, ""]
    if params:
        lines.append("Parameters:")
        for pname, pinfo in params.items():
            ptype = pinfo.get("type", "any")
            pdesc = pinfo.get("description", "")
            flag = "" if pname in required else ", optional"
            lines.append(f"  - {pname} ({ptype}{flag}): {pdesc}")

    return "\n".join(lines)


def tool_catalog(schemas: list[dict]) -> str:
    """Render every tool schema as one prompt block."""
    return "\n\n".join(_auto_prompt_instructions(schema) for schema in schemas)
