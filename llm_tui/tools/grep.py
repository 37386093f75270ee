"""Grep tool for regex search across a directory tree."""

import fnmatch
import os
import re
from pathlib import Path
from typing import Any

from llm_tui.exceptions import SandboxViolationError
from llm_tui.logging import get_logger
from llm_tui.tools.glob import BUILD_DIRS
from llm_tui.tools.registry import Tool, ToolOutput, coerce_bool, coerce_int
from llm_tui.tools.sandbox import resolve_within_root

log = get_logger(__name__)

OUTPUT_MODES = ("content", "files_with_matches", "count")

FILE_TYPES: dict[str, tuple[str, ...]] = {
    "c": (".c", ".h"),
    "cpp": (".cpp", ".cc", ".cxx", ".hpp", ".hh", ".h"),
    "css": (".css", ".scss", ".sass"),
    "go": (".go",),
    "html": (".html", ".htm"),
    "java": (".java",),
    "js": (".js", ".jsx", ".mjs", ".cjs"),
    "json": (".json",),
    "md": (".md", ".markdown"),
    "py": (".py", ".pyi"),
    "rb": (".rb",),
    "rust": (".rs",),
    "sh": (".sh", ".bash", ".zsh"),
    "toml": (".toml",),
    "ts": (".ts", ".tsx"),
    "yaml": (".yaml", ".yml"),
}


def expand_braces(pattern: str) -> list[str]:
    """Expand one level of `{a,b}` alternatives, recursively."""
    match = re.search(r"\{([^{}]*)\}", pattern)
    if not match:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(head + option + tail))
    return expanded


def _glob_matches(relative: str, patterns: list[str]) -> bool:
    name = relative.rsplit("/", 1)[-1]
    for pattern in patterns:
        if "/" not in pattern:
            if fnmatch.fnmatch(name, pattern):
                return True
            continue
        if fnmatch.fnmatch(relative, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatch(relative, pattern[3:]):
            return True
    return False


def _iter_files(base: Path):
    if base.is_file():
        yield base
        return
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d not in BUILD_DIRS)
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            yield Path(dirpath) / filename


def _matched_lines(content: str, regex: re.Pattern[str], multiline: bool) -> tuple[list[int], int]:
    """0-indexed matching line numbers and the match count."""
    if not multiline:
        hits = [i for i, line in enumerate(content.splitlines()) if regex.search(line)]
        return hits, len(hits)

    lines: set[int] = set()
    count = 0
    for match in regex.finditer(content):
        count += 1
        first = content.count("\n", 0, match.start())
        last = first + content.count("\n", match.start(), max(match.end() - 1, match.start()))
        lines.update(range(first, last + 1))
    total = len(content.splitlines())
    return sorted(line for line in lines if line < total), count


class GrepTool(Tool):
    """Search file contents with a regular expression."""

    name = "grep"
    description = (
        "Search file contents with a regular expression. "
        "Filter files with the glob parameter (e.g. \"*.js\") or the type parameter (e.g. \"py\"). "
        "Output modes: \"content\" shows matching lines, \"files_with_matches\" shows only file paths (default), "
        "\"count\" shows match counts."
    )
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": "The regular expression pattern to search for in file contents",
            },
            "path": {
                "type": "string",
                "description": "File or directory to search in. Defaults to current working directory.",
            },
            "glob": {
                "type": "string",
                "description": "Glob pattern to filter files (e.g. \"*.js\", \"*.{ts,tsx}\")",
            },
            "type": {
                "type": "string",
                "description": "File type to search. Common types: js, py, rust, go, java, etc.",
            },
            "output_mode": {
                "type": "string",
                "description": "Output mode: \"content\", \"files_with_matches\" (default) or \"count\".",
                "enum": list(OUTPUT_MODES),
            },
            "case_insensitive": {
                "type": "boolean",
                "description": "Case insensitive search",
            },
            "line_numbers": {
                "type": "boolean",
                "description": "Show line numbers in output. Requires output_mode: \"content\", ignored otherwise.",
            },
            "context_before": {
                "type": "number",
                "description": "Number of lines to show before each match. Requires output_mode: \"content\".",
            },
            "context_after": {
                "type": "number",
                "description": "Number of lines to show after each match. Requires output_mode: \"content\".",
            },
            "multiline": {
                "type": "boolean",
                "description": "Enable multiline mode where . matches newlines and patterns can span lines.",
            },
        },
        "required": ["pattern"],
    }

    def execute(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
        output_mode: str | None = None,
        case_insensitive: Any = False,
        line_numbers: Any = True,
        context_before: Any = None,
        context_after: Any = None,
        multiline: Any = False,
        **kwargs: Any,
    ) -> ToolOutput:
        """Search files under `path`.

        The file-type filter arrives as the `type` argument.
        """
        file_type = kwargs.get("type")
        mode = output_mode or "files_with_matches"
        try:
            if mode not in OUTPUT_MODES:
                return ToolOutput(success=False, error=f"Unknown output_mode: {mode}")

            flags = re.IGNORECASE if coerce_bool(case_insensitive) else 0
            spans_lines = coerce_bool(multiline)
            if spans_lines:
                flags |= re.DOTALL | re.MULTILINE
            regex = re.compile(pattern, flags)

            extensions: tuple[str, ...] | None = None
            if file_type:
                extensions = FILE_TYPES.get(str(file_type).lower())
                if extensions is None:
                    return ToolOutput(success=False, error=f"Unknown file type: {file_type}")
            glob_patterns = expand_braces(glob) if glob else None

            root = kwargs.get("_confinement_root")
            base = resolve_within_root(path or ".", root)
            before = max(coerce_int(context_before) or 0, 0)
            after = max(coerce_int(context_after) or 0, 0)
            numbered = coerce_bool(line_numbers)

            results: list[str] = []
            matched_files = 0
            for file_path in _iter_files(base):
                relative = file_path.name if file_path == base else file_path.relative_to(base).as_posix()
                if extensions is not None and file_path.suffix.lower() not in extensions:
                    continue
                if glob_patterns is not None and not _glob_matches(relative, glob_patterns):
                    continue
                try:
                    resolve_within_root(file_path, root)
                except SandboxViolationError:
                    log.debug("Skipping file outside root", path=str(file_path))
                    continue

                try:
                    content = file_path.read_text(encoding="utf-8")
                except (UnicodeDecodeError, OSError):
                    continue

                hits, count = _matched_lines(content, regex, spans_lines)
                if not hits:
                    continue
                matched_files += 1

                if mode == "files_with_matches":
                    results.append(str(file_path))
                elif mode == "count":
                    results.append(f"{file_path}:{count}")
                else:
                    results.extend(
                        self._format_content(str(file_path), content.splitlines(), hits, before, after, numbered)
                    )

            if not matched_files:
                return ToolOutput(success=True, content="No matches found")
            if mode == "files_with_matches":
                return ToolOutput(success=True, content=f"Found {matched_files} files\n" + "\n".join(results))
            return ToolOutput(success=True, content="\n".join(results))

        except re.error as e:
            return ToolOutput(success=False, error=f"Invalid regex pattern: {e}")
        except Exception as e:
            log.error("Grep failed", pattern=pattern, error=str(e))
            return ToolOutput(success=False, error=str(e))

    @staticmethod
    def _format_content(
        path: str,
        lines: list[str],
        hits: list[int],
        before: int,
        after: int,
        numbered: bool,
    ) -> list[str]:
        """Matching lines as `path:N:text`, context as `path-N-text`, groups split by `--`."""
        hit_set = set(hits)
        shown: list[int] = []
        for hit in hits:
            shown.extend(range(max(hit - before, 0), min(hit + after + 1, len(lines))))
        ordered = sorted(set(shown))

        output: list[str] = []
        previous: int | None = None
        for index in ordered:
            if previous is not None and index != previous + 1:
                output.append("--")
            sep = ":" if index in hit_set else "-"
            if numbered:
                output.append(f"{path}{sep}{index + 1}{sep}{lines[index]}")
            else:
                output.append(f"{path}{sep}{lines[index]}")
            previous = index
        return output
