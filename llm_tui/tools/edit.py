"""Edit tool for exact string replacement inside a file."""

from typing import Any

from llm_tui.logging import get_logger
from llm_tui.tools.read import number_lines
from llm_tui.tools.registry import Tool, ToolOutput, coerce_bool
from llm_tui.tools.sandbox import resolve_within_root

log = get_logger(__name__)

SNIPPET_CONTEXT_LINES = 3


class EditTool(Tool):
    """Replace an exact string in a file."""

    name = "edit"
    description = (
        "Edit a file by replacing old_string with new_string. "
        "old_string must be unique in the file unless replace_all is true."
    )
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "The absolute path to the file to edit",
            },
            "old_string": {
                "type": "string",
                "description": "The exact string to replace (must match exactly including indentation)",
            },
            "new_string": {
                "type": "string",
                "description": "The string to replace it with",
            },
            "replace_all": {
                "type": "boolean",
                "description": "If true, replace all occurrences. If false, old_string must be unique.",
            },
        },
        "required": ["file_path", "old_string", "new_string"],
    }

    def execute(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: Any = False,
        **kwargs: Any,
    ) -> ToolOutput:
        try:
            replace_every = coerce_bool(replace_all)
            path = resolve_within_root(file_path, kwargs.get("_confinement_root"))

            if not path.exists():
                return ToolOutput(success=False, error=f"File does not exist: {file_path}")
            if not path.is_file():
                return ToolOutput(success=False, error=f"Path is not a file: {file_path}")
            if not old_string:
                return ToolOutput(success=False, error="old_string must not be empty")

            content = path.read_text(encoding="utf-8")
            count = content.count(old_string)

            if count == 0:
                return ToolOutput(success=False, error=f"old_string not found in file: '{old_string}'")
            if count > 1 and not replace_every:
                return ToolOutput(
                    success=False,
                    error=(
                        f"old_string appears {count} times in file. Use replace_all=true to replace "
                        "all occurrences, or provide a more specific old_string."
                    ),
                )

            first_line = content[: content.index(old_string)].count("\n")
            if replace_every:
                updated = content.replace(old_string, new_string)
            else:
                updated = content.replace(old_string, new_string, 1)
            path.write_text(updated, encoding="utf-8")

            lines = updated.splitlines()
            start = max(first_line - SNIPPET_CONTEXT_LINES, 0)
            end = min(first_line + SNIPPET_CONTEXT_LINES + 1, len(lines))
            header = (
                f"The file {file_path} has been updated. "
                "Here's the result of running `cat -n` on a snippet of the edited file:\n"
            )
            return ToolOutput(success=True, content=header + number_lines(lines[start:end], start + 1))

        except Exception as e:
            log.error("Edit failed", path=file_path, error=str(e))
            return ToolOutput(success=False, error=str(e))
