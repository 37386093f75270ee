"""Read tool for reading file contents."""

from typing import Any

from llm_tui.logging import get_logger
from llm_tui.tools.registry import Tool, ToolOutput, coerce_int
from llm_tui.tools.sandbox import resolve_within_root

log = get_logger(__name__)


def number_lines(lines: list[str], start: int) -> str:
    """Render lines in `cat -n` style; `start` is the 1-indexed first line number."""
    return "".join(f"{start + i:6}→{line}\n" for i, line in enumerate(lines))


class ReadTool(Tool):
    """Read file contents."""

    name = "read"
    description = "Read a file from the filesystem with line numbers."
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "The absolute path to the file to read",
            },
            "offset": {
                "type": "number",
                "description": "Optional: Line number to start reading from (1-indexed)",
            },
            "limit": {
                "type": "number",
                "description": "Optional: Number of lines to read",
            },
        },
        "required": ["file_path"],
    }

    def execute(
        self,
        file_path: str,
        offset: int | None = None,
        limit: int | None = None,
        **kwargs: Any,
    ) -> ToolOutput:
        """Read a file.

        Args:
            file_path: Path to file
            offset: Optional 1-indexed first line
            limit: Optional line count

        Returns:
            ToolOutput with line-numbered contents
        """
        try:
            path = resolve_within_root(file_path, kwargs.get("_confinement_root"))

            if not path.exists():
                return ToolOutput(success=False, error=f"File does not exist: {file_path}")
            if not path.is_file():
                return ToolOutput(success=False, error=f"Path is not a file: {file_path}")

            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()

            start = max((coerce_int(offset) or 1) - 1, 0)
            line_limit = coerce_int(limit)
            end = len(lines) if line_limit is None else min(start + max(line_limit, 0), len(lines))

            return ToolOutput(success=True, content=number_lines(lines[start:end], start + 1))

        except Exception as e:
            log.error("Read failed", path=file_path, error=str(e))
            return ToolOutput(success=False, error=str(e))
