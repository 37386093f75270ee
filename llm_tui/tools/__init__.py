"""Tools package for llm-tui."""

from llm_tui.tools.bash import BashTool
from llm_tui.tools.edit import EditTool
from llm_tui.tools.glob import GlobTool
from llm_tui.tools.grep import GrepTool
from llm_tui.tools.read import ReadTool
from llm_tui.tools.registry import (
    Tool,
    ToolOutput,
    ToolRegistry,
    create_default_registry,
)
from llm_tui.tools.sandbox import confinement_root, ensure_cwd_within_root, resolve_within_root
from llm_tui.tools.write import WriteTool

__all__ = [
    "Tool",
    "ToolOutput",
    "ToolRegistry",
    "create_default_registry",
    "confinement_root",
    "ensure_cwd_within_root",
    "resolve_within_root",
    "BashTool",
    "EditTool",
    "GlobTool",
    "GrepTool",
    "ReadTool",
    "WriteTool",
]
