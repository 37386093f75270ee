"""Glob tool for finding files by pattern."""

import glob
import os
from pathlib import Path
from typing import Any

from llm_tui.exceptions import SandboxViolationError
from llm_tui.logging import get_logger
from llm_tui.tools.registry import Tool, ToolOutput
from llm_tui.tools.sandbox import resolve_within_root

log = get_logger(__name__)

BUILD_DIRS = frozenset({"target", "node_modules", "__pycache__", "dist", "build"})
SYSTEM_PREFIXES = ("/boot", "/dev", "/sys", "/proc", "/etc", "/lost+found")


def is_excluded(path: Path) -> bool:
    """Hidden segments or build directories anywhere in `path`, or a system path."""
    text = path.as_posix()
    if any(text == prefix or text.startswith(prefix + "/") for prefix in SYSTEM_PREFIXES):
        return True
    for part in path.parts:
        if part.startswith(".") and part not in (".", ".."):
            return True
        if part in BUILD_DIRS:
            return True
    return False


def _mtime(path: str) -> float:
    try:
        return os.path.getmtime(path)
    except OSError:
        return 0.0


class GlobTool(Tool):
    """Find files by pattern."""

    name = "glob"
    description = "Find files matching a glob pattern. Results are sorted by modification time, newest first."
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": "Glob pattern (e.g., '**/*.py', 'src/**/*.ts')",
            },
            "path": {
                "type": "string",
                "description": "Directory to search in (default: current directory)",
            },
        },
        "required": ["pattern"],
    }

    def execute(self, pattern: str, path: str | None = None, **kwargs: Any) -> ToolOutput:
        """Find files matching pattern.

        Args:
            pattern: Glob pattern, relative to `path`
            path: Optional base directory

        Returns:
            ToolOutput with newline-joined matches
        """
        root = kwargs.get("_confinement_root")
        try:
            base = resolve_within_root(path or ".", root)

            matches: list[str] = []
            for match in glob.glob(str(base / pattern), recursive=True):
                candidate = Path(match)
                if is_excluded(candidate):
                    continue
                try:
                    resolve_within_root(candidate, root)
                except SandboxViolationError:
                    log.debug("Skipping match outside root", path=match)
                    continue
                matches.append(match)

            if not matches:
                return ToolOutput(success=True, content=f"No files found matching: {pattern}")

            matches.sort(key=_mtime, reverse=True)
            return ToolOutput(success=True, content="\n".join(matches))

        except Exception as e:
            log.error("Glob failed", pattern=pattern, error=str(e))
            return ToolOutput(success=False, error=str(e))
