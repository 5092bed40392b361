"""Helpers for reading MCP ``tools/call`` results (``{"content": [...], "isError": bool}``)."""

from __future__ import annotations

from typing import Any


def content_blocks(result: Any) -> list[dict[str, Any]]:
    if not isinstance(result, dict):
        return []
    content = result.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def extract_text(result: Any) -> str:
    """Join every text block of a tool result with newlines."""
    return "\n".join(
        str(block.get("text", ""))
        for block in content_blocks(result)
        if block.get("type") == "text"
    )


def extract_image(result: Any) -> str | None:
    """Base64 data of the first image block, e.g. a viewport screenshot."""
    for block in content_blocks(result):
        if block.get("type") == "image" and block.get("data"):
            return block["data"]
    return None


def is_error_result(result: Any) -> bool:
    return isinstance(result, dict) and bool(result.get("isError"))
