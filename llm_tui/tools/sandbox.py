"""Home-directory confinement for filesystem and process tools."""

from pathlib import Path

from llm_tui.exceptions import SandboxViolationError


def confinement_root(root: Path | str | None = None) -> Path:
    """Canonical confinement root; the home directory unless overridden."""
    base = Path(root).expanduser() if root else Path.home()
    return base.resolve()


def _absolute(path: Path | str) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = Path.cwd() / candidate
    return candidate


def _nearest_existing(path: Path) -> tuple[Path, tuple[str, ...]]:
    """Split a path into its nearest existing ancestor and the missing tail."""
    current = path
    tail: list[str] = []
    while not current.exists() and not current.is_symlink():
        if current.parent == current:
            break
        tail.append(current.name)
        current = current.parent
    return current, tuple(reversed(tail))


def resolve_within_root(path: Path | str, root: Path | str | None = None) -> Path:
    """Canonicalize `path` and require it to be inside the confinement root.

    Symlinks are followed, including a final-hop link that points outside
    the root. For a path that does not exist yet, the nearest existing
    ancestor is canonicalized and checked, and the missing tail is appended.

    Raises:
        SandboxViolationError if the canonical path escapes the root
    """
    root_path = confinement_root(root)
    absolute = _absolute(path)

    ancestor, tail = _nearest_existing(absolute)
    resolved = ancestor.resolve()
    if tail:
        # ".." in the missing tail cannot be resolved through links; collapse it against the canonical ancestor.
        resolved = Path(*_collapse(resolved.parts + tail))

    if resolved != root_path and root_path not in resolved.parents:
        raise SandboxViolationError(str(path), str(root_path))
    return resolved


def _collapse(parts: tuple[str, ...]) -> list[str]:
    collapsed: list[str] = []
    for part in parts:
        if part == "..":
            if len(collapsed) > 1:
                collapsed.pop()
        elif part not in ("", "."):
            collapsed.append(part)
    return collapsed


def ensure_cwd_within_root(root: Path | str | None = None) -> Path:
    """Require the process working directory to be inside the root."""
    return resolve_within_root(Path.cwd(), root)
