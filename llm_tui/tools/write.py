"""Write tool for writing file contents."""

from typing import Any

from llm_tui.logging import get_logger
from llm_tui.tools.registry import Tool, ToolOutput
from llm_tui.tools.sandbox import resolve_within_root

log = get_logger(__name__)


class WriteTool(Tool):
    """Write content to files."""

    name = "write"
    description = "Write content to a file. Creates the file if it doesn't exist, overwrites if it does."
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "The absolute path to the file to write",
            },
            "content": {
                "type": "string",
                "description": "The content to write to the file",
            },
        },
        "required": ["file_path", "content"],
    }

    def execute(self, file_path: str, content: str, **kwargs: Any) -> ToolOutput:
        """Write content to a file, creating parent directories.

        Args:
            file_path: Path to file
            content: Content to write

        Returns:
            ToolOutput with status
        """
        try:
            path = resolve_within_root(file_path, kwargs.get("_confinement_root"))

            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(str(content), encoding="utf-8")

            return ToolOutput(
                success=True,
                content=f"File created successfully at: {file_path}",
            )

        except Exception as e:
            log.error("Write failed", path=file_path, error=str(e))
            return ToolOutput(success=False, error=str(e))
