import pytest
from langchain_core.language_models import FakeListChatModel

from blender_gateway.errors import CodeGenerationError
from blender_gateway.prompt import BlenderCodeGenerator, strip_code_fences


class StubClient:
    def __init__(self):
        self.connected = False
        self.executed = []

    async def ensure_connected(self):
        self.connected = True

    async def execute_blender_code(self, code):
        self.executed.append(code)
        return {"content": [{"type": "text", "text": "Code executed successfully: Red cube created"}], "isError": False}


def test_strip_code_fences():
    fenced = "Here you go:\n```python\nimport bpy\nprint('hi')\n```\nEnjoy."

    assert strip_code_fences(fenced) == "import bpy\nprint('hi')"
    assert strip_code_fences("```\nimport bpy\n```") == "import bpy"
    assert strip_code_fences("  import bpy\n") == "import bpy"


@pytest.mark.asyncio
async def test_generate_returns_plain_code():
    model = FakeListChatModel(responses=["```python\nimport bpy\nbpy.ops.mesh.primitive_cube_add()\n```"])
    generator = BlenderCodeGenerator(model)

    code = await generator.generate("create a cube")

    assert code == "import bpy\nbpy.ops.mesh.primitive_cube_add()"


@pytest.mark.asyncio
async def test_generate_requires_prompt():
    generator = BlenderCodeGenerator(FakeListChatModel(responses=["import bpy"]))

    with pytest.raises(CodeGenerationError, match="Prompt is required"):
        await generator.generate("   ")


@pytest.mark.asyncio
async def test_generate_rejects_empty_output():
    generator = BlenderCodeGenerator(FakeListChatModel(responses=["```python\n```"]))

    with pytest.raises(CodeGenerationError):
        await generator.generate("create a cube")


@pytest.mark.asyncio
async def test_run_prompt_executes_generated_code():
    generator = BlenderCodeGenerator(FakeListChatModel(responses=["import bpy\nprint('Red cube created')"]))
    client = StubClient()

    outcome = await generator.run_prompt(client, "create a red cube")

    assert client.connected
    assert client.executed == ["import bpy\nprint('Red cube created')"]
    assert outcome.code == client.executed[0]
    assert outcome.result["isError"] is False


def test_model_string_uses_init_chat_model(monkeypatch):
    calls = []
    fake = FakeListChatModel(responses=["import bpy"])

    def init_chat_model(model, **kwargs):
        calls.append((model, kwargs))
        return fake

    monkeypatch.setattr("langchain.chat_models.init_chat_model", init_chat_model)

    generator = BlenderCodeGenerator("anthropic:claude-sonnet-4-5-20250929")

    assert generator.model is fake
    assert calls == [("anthropic:claude-sonnet-4-5-20250929", {"temperature": 0.3, "max_tokens": 500})]


def test_package_exports_the_generator_class():
    import blender_gateway

    generator = blender_gateway.BlenderCodeGenerator(FakeListChatModel(responses=["import bpy"]))

    assert blender_gateway.BlenderCodeGenerator is BlenderCodeGenerator
    assert isinstance(generator, blender_gateway.BlenderCodeGenerator)
    with pytest.raises(AttributeError):
        blender_gateway.no_such_helper
