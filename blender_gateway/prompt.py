"""
Natural-language prompt → Blender Python code.

A chat model turns the prompt into a bpy script, which is then executed in
Blender through the MCP client:

    generator = BlenderCodeGenerator("anthropic:claude-sonnet-4-5-20250929")
    outcome = await generator.run_prompt(client, "create a red cube")
    print(outcome.code)
    print(extract_text(outcome.result))
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from blender_gateway.client import BlenderMCPClient
from blender_gateway.errors import CodeGenerationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a Blender Python code generator. Convert user prompts into executable Blender Python code.
Rules:
- Only output Python code, no explanations
- Always import bpy at the start
- Use proper Blender API syntax with shader nodes for materials
- Handle common operations: creating objects, materials, animations, modifiers
- For positions, use location parameter in tuples
- For colors, ALWAYS use shader nodes (Principled BSDF) with RGBA values (0-1 range)
- NEVER use diffuse_color alone - always set up proper shader nodes
- Add print statements to confirm actions

Examples:
User: "create a red cube"
Code: import bpy
bpy.ops.mesh.primitive_cube_add(location=(0, 0, 0))
obj = bpy.context.active_object
mat = bpy.data.materials.new(name='Red')
mat.use_nodes = True
nodes = mat.node_tree.nodes
bsdf = nodes.get('Principled BSDF')
if bsdf:
    bsdf.inputs['Base Color'].default_value = (1, 0, 0, 1)
obj.data.materials.append(mat)
print('Red cube created')

User: "add a light above"
Code: import bpy
bpy.ops.object.light_add(type='POINT', location=(0, 0, 5))
print('Light added')"""

_FENCE = re.compile(r"```(?:python|py)?\s*\n(.*?)```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the code inside the first Markdown fence, or the text itself."""
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


@dataclass
class PromptResult:
    code: str
    result: Any


class BlenderCodeGenerator:
    def __init__(
        self,
        model: BaseChatModel | str,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ):
        """
        Args:
            model: A LangChain chat model, or a "provider:model" string
                   resolved with langchain's init_chat_model.
        """
        if isinstance(model, str):
            from langchain.chat_models import init_chat_model
            model = init_chat_model(model, temperature=temperature, max_tokens=max_tokens)
        self.model = model

    async def generate(self, prompt: str) -> str:
        if not prompt or not prompt.strip():
            raise CodeGenerationError("Prompt is required")

        response = await self.model.ainvoke([
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=prompt),
        ])
        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )

        code = strip_code_fences(content or "")
        if not code:
            raise CodeGenerationError("Model returned no code")
        logger.info(f"Generated {len(code.splitlines())} lines of Blender code")
        logger.debug(f"Generated code:\n{code}")
        return code

    async def run_prompt(self, client: BlenderMCPClient, prompt: str) -> PromptResult:
        """Generate code for ``prompt`` and execute it in Blender."""
        code = await self.generate(prompt)
        await client.ensure_connected()
        result = await client.execute_blender_code(code)
        return PromptResult(code=code, result=result)
