"""Tool registry and base tool class."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, model_validator

from llm_tui.config import get_config
from llm_tui.exceptions import ToolExecutionError, ToolNotFoundError
from llm_tui.llm import ToolDefinition
from llm_tui.logging import get_logger

log = get_logger(__name__)


class ToolOutput(BaseModel):
    """Outcome of one tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolOutput":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    def as_text(self) -> str:
        """Text handed back to the model; failures are prefixed with `Error:`."""
        if self.success:
            return self.content
        return f"Error: {self.error}"


def coerce_int(value: Any) -> int | None:
    """Models send numbers as ints, floats or strings."""
    if value is None or value == "":
        return None
    return int(float(value))


def coerce_bool(value: Any) -> bool:
    """Accept JSON booleans as well as "true"/"1"/"yes" strings and numbers."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
        raise ValueError(f"invalid boolean string: {value}")
    if value is None:
        return False
    raise ValueError("expected boolean or string")


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}

    @abstractmethod
    def execute(self, **kwargs: Any) -> ToolOutput:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments, plus `_confinement_root`
                injected by the registry

        Returns:
            ToolOutput with success status and content
        """
        pass

    def get_definition(self) -> ToolDefinition:
        """Get the backend-neutral tool definition."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.parameters,
        )

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check required arguments are present.

        Raises:
            ToolExecutionError if one is missing
        """
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {field}",
                )


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self, confinement_root: Path | str | None = None):
        """Initialize registry.

        Args:
            confinement_root: Directory every filesystem/process operation
                must stay inside; None means the user's home directory,
                resolved at each check
        """
        self._tools: dict[str, Tool] = {}
        self.confinement_root = Path(confinement_root).expanduser() if confinement_root else None

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions in registration order."""
        return [tool.get_definition() for tool in self._tools.values()]

    def execute(self, name: str, arguments: dict[str, Any]) -> ToolOutput:
        """Execute a tool by name.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            ToolOutput from execution

        Raises:
            ToolNotFoundError if tool not found
            ToolExecutionError if arguments are invalid
        """
        tool = self.get(name)
        if not isinstance(arguments, dict):
            raise ToolExecutionError(name, "Arguments must be a JSON object")
        tool.validate_arguments(arguments)

        log.info("Executing tool", tool=name, args=arguments)
        try:
            result = tool.execute(**arguments, _confinement_root=self.confinement_root)
        except TypeError as e:
            raise ToolExecutionError(name, f"Invalid arguments: {e}")
        log.info("Tool executed", tool=name, success=result.success)
        return result


def create_default_registry(confinement_root: Path | str | None = None) -> ToolRegistry:
    """Registry holding the six built-in tools."""
    from llm_tui.tools.bash import BashTool
    from llm_tui.tools.edit import EditTool
    from llm_tui.tools.glob import GlobTool
    from llm_tui.tools.grep import GrepTool
    from llm_tui.tools.read import ReadTool
    from llm_tui.tools.write import WriteTool

    if confinement_root is None:
        confinement_root = get_config().resolved_confinement_root()
    registry = ToolRegistry(confinement_root=confinement_root)
    for tool in (ReadTool(), WriteTool(), EditTool(), GlobTool(), GrepTool(), BashTool()):
        registry.register(tool)
    return registry
