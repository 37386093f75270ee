from pathlib import Path

import pytest

import llm_tui.config as config_module
from llm_tui.config import Config
from llm_tui.exceptions import ToolExecutionError, ToolNotFoundError
from llm_tui.tools.registry import Tool, ToolOutput, ToolRegistry, coerce_bool, create_default_registry


class EchoTool(Tool):
    name = "echo"
    description = "Echo text back"
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self):
        self.roots: list = []

    def execute(self, text: str, **kwargs) -> ToolOutput:
        self.roots.append(kwargs.get("_confinement_root"))
        return ToolOutput(success=True, content=text)


@pytest.fixture
def default_config(monkeypatch):
    monkeypatch.setattr(config_module, "_config", Config())


def test_default_registry_exposes_six_tools_with_required_fields(default_config) -> None:
    registry = create_default_registry()

    definitions = {definition.name: definition for definition in registry.get_definitions()}

    assert list(definitions) == ["read", "write", "edit", "glob", "grep", "bash"]
    assert definitions["read"].input_schema["required"] == ["file_path"]
    assert definitions["write"].input_schema["required"] == ["file_path", "content"]
    assert definitions["edit"].input_schema["required"] == ["file_path", "old_string", "new_string"]
    assert definitions["glob"].input_schema["required"] == ["pattern"]
    assert definitions["grep"].input_schema["required"] == ["pattern"]
    assert definitions["bash"].input_schema["required"] == ["command"]
    assert set(definitions["grep"].input_schema["properties"]) == {
        "pattern",
        "path",
        "glob",
        "type",
        "output_mode",
        "case_insensitive",
        "line_numbers",
        "context_before",
        "context_after",
        "multiline",
    }


def test_registry_injects_confinement_root(tmp_path: Path) -> None:
    registry = ToolRegistry(confinement_root=tmp_path)
    tool = EchoTool()
    registry.register(tool)

    result = registry.execute("echo", {"text": "hi"})

    assert result.content == "hi"
    assert tool.roots == [tmp_path]


def test_registry_denies_write_outside_root(tmp_path: Path, default_config) -> None:
    root = tmp_path / "home"
    root.mkdir()
    registry = create_default_registry(confinement_root=root)

    result = registry.execute("write", {"file_path": str(tmp_path / "escape.txt"), "content": "x"})

    assert result.success is False
    assert result.as_text().startswith("Error: Access denied")
    assert not (tmp_path / "escape.txt").exists()


def test_registry_rejects_unknown_tool_and_missing_arguments() -> None:
    registry = ToolRegistry()
    registry.register(EchoTool())

    with pytest.raises(ToolNotFoundError):
        registry.execute("nope", {})
    with pytest.raises(ToolExecutionError, match="Missing required argument: text"):
        registry.execute("echo", {})
    with pytest.raises(ToolExecutionError, match="Arguments must be a JSON object"):
        registry.execute("echo", ["hi"])


def test_registry_reports_signature_mismatch_as_invalid_arguments() -> None:
    class StrictTool(Tool):
        name = "strict"
        parameters = {"type": "object", "properties": {}, "required": []}

        def execute(self) -> ToolOutput:
            return ToolOutput(success=True)

    registry = ToolRegistry()
    registry.register(StrictTool())

    with pytest.raises(ToolExecutionError, match="Invalid arguments"):
        registry.execute("strict", {"unexpected": 1})


def test_tool_output_failure_always_has_error() -> None:
    assert ToolOutput(success=False, content="stderr output").error == "stderr output"
    assert ToolOutput(success=False).error == "Tool execution failed"
    assert ToolOutput(success=False, error="boom").as_text() == "Error: boom"
    assert ToolOutput(success=True, content="fine").as_text() == "fine"


def test_coerce_bool_accepts_flexible_values() -> None:
    assert coerce_bool("yes") is True
    assert coerce_bool("0") is False
    assert coerce_bool(1) is True
    assert coerce_bool(None) is False
    with pytest.raises(ValueError):
        coerce_bool("maybe")


def test_default_registry_uses_configured_confinement_root(tmp_path: Path, monkeypatch) -> None:
    config = Config()
    config.tools.confinement_root = str(tmp_path)
    monkeypatch.setattr(config_module, "_config", config)

    registry = create_default_registry()

    assert registry.confinement_root == tmp_path
