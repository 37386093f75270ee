import os
from pathlib import Path

import pytest

from llm_tui.tools.bash import BashTool, shell_argv

pytestmark = pytest.mark.skipif(os.name == "nt", reason="POSIX shell required")


@pytest.fixture
def root(tmp_path: Path, monkeypatch) -> Path:
    resolved = tmp_path.resolve()
    monkeypatch.chdir(resolved)
    return resolved


def _tool() -> BashTool:
    return BashTool(default_timeout_ms=120_000, max_timeout_ms=600_000)


def test_shell_argv_uses_sh_on_posix() -> None:
    assert shell_argv("ls -la") == ["sh", "-c", "ls -la"]


def test_stdout_then_stderr_are_concatenated(root: Path) -> None:
    result = _tool().execute(command="echo out; echo err 1>&2", _confinement_root=root)

    assert result.success is True
    assert result.content == "out\nerr\n"


def test_non_zero_exit_appends_exit_code(root: Path) -> None:
    result = _tool().execute(command="echo failing; exit 3", _confinement_root=root)

    assert result.success is False
    assert result.content == "failing\nExit code: 3"
    assert result.as_text() == "Error: failing\nExit code: 3"


def test_timeout_is_capped(root: Path) -> None:
    tool = BashTool(default_timeout_ms=100, max_timeout_ms=200)

    result = tool.execute(command="sleep 5", timeout=60_000, _confinement_root=root)

    assert result.success is False
    assert result.error == "Command timed out after 200ms"


def test_effective_timeout_defaults_and_caps() -> None:
    tool = _tool()

    assert tool.effective_timeout_ms(None) == 120_000
    assert tool.effective_timeout_ms("5000") == 5_000
    assert tool.effective_timeout_ms(10_000_000) == 600_000


def test_refuses_to_run_when_cwd_is_outside_root(root: Path) -> None:
    inner = root / "inner"
    inner.mkdir()
    marker = root / "marker.txt"

    result = _tool().execute(command=f"touch {marker}", _confinement_root=inner)

    assert result.success is False
    assert "Access denied" in result.error
    assert not marker.exists()


def test_commands_run_in_working_directory(root: Path) -> None:
    result = _tool().execute(command="pwd", _confinement_root=root)

    assert Path(result.content.strip()).resolve() == root
