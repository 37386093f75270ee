"""Bash tool for executing shell commands."""

import os
import subprocess
from typing import Any

from llm_tui.config import get_config
from llm_tui.logging import get_logger
from llm_tui.tools.registry import Tool, ToolOutput, coerce_int
from llm_tui.tools.sandbox import ensure_cwd_within_root

log = get_logger(__name__)


def shell_argv(command: str) -> list[str]:
    """Argument vector handing `command` to the platform shell."""
    if os.name == "nt":
        return ["cmd", "/C", command]
    return ["sh", "-c", command]


class BashTool(Tool):
    """Execute shell commands."""

    name = "bash"
    description = (
        "Execute a bash command and return its output. "
        "Use this to run build commands, git operations, system utilities, etc."
    )
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The command to execute (e.g., 'ls -la', 'git status')",
            },
            "timeout": {
                "type": "number",
                "description": "Optional: Timeout in milliseconds (default: 120000, max: 600000)",
            },
            "description": {
                "type": "string",
                "description": "Optional: Clear, concise description of what this command does",
            },
        },
        "required": ["command"],
    }

    def __init__(self, default_timeout_ms: int | None = None, max_timeout_ms: int | None = None):
        if default_timeout_ms is None or max_timeout_ms is None:
            tools_config = get_config().tools
            default_timeout_ms = default_timeout_ms or tools_config.bash_default_timeout_ms
            max_timeout_ms = max_timeout_ms or tools_config.bash_max_timeout_ms
        self.default_timeout_ms = int(default_timeout_ms)
        self.max_timeout_ms = int(max_timeout_ms)

    def effective_timeout_ms(self, requested: Any) -> int:
        """Requested timeout, defaulted and capped."""
        timeout_ms = coerce_int(requested)
        if timeout_ms is None or timeout_ms <= 0:
            timeout_ms = self.default_timeout_ms
        return min(timeout_ms, self.max_timeout_ms)

    def execute(
        self,
        command: str,
        timeout: Any = None,
        description: str | None = None,
        **kwargs: Any,
    ) -> ToolOutput:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            timeout: Optional timeout in milliseconds
            description: Informational only

        Returns:
            ToolOutput with stdout, then stderr, then the exit status on failure
        """
        try:
            ensure_cwd_within_root(kwargs.get("_confinement_root"))
            timeout_ms = self.effective_timeout_ms(timeout)

            log.info("Executing shell command", command=command, timeout_ms=timeout_ms, description=description)
            try:
                completed = subprocess.run(
                    shell_argv(command),
                    capture_output=True,
                    timeout=timeout_ms / 1000,
                )
            except subprocess.TimeoutExpired:
                return ToolOutput(success=False, error=f"Command timed out after {timeout_ms}ms")

            output = completed.stdout.decode("utf-8", errors="replace")
            output += completed.stderr.decode("utf-8", errors="replace")

            if completed.returncode != 0:
                if output and not output.endswith("\n"):
                    output += "\n"
                output += f"Exit code: {completed.returncode}"
                return ToolOutput(success=False, content=output, error=output)

            return ToolOutput(success=True, content=output)

        except Exception as e:
            log.error("Shell command failed", command=command, error=str(e))
            return ToolOutput(success=False, error=str(e))
