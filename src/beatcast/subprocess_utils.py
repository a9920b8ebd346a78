"""Utilities for running external CLI tools.

Used for host lookups that have no portable Python API (the default route
behind the ``"gateway"`` unicast target). Centralizing subprocess calls
gives consistent:
- timeout handling
- stdout/stderr capture
- error messages that include the invoked command
"""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class CommandResult:
    """Captured result for a command execution."""

    cmd: List[str]
    returncode: int
    stdout: str
    stderr: str


def format_cmd(cmd: Sequence[str]) -> str:
    """Shell-quote a command for log and error messages only."""
    return " ".join(shlex.quote(str(c)) for c in cmd)


def run_checked(
    cmd: Sequence[str],
    *,
    timeout_s: Optional[float] = None,
    tool_name: str = "command",
) -> CommandResult:
    """Run a command and raise RuntimeError with helpful context on failure.

    Args:
        cmd: Command tokens, e.g. ["ip", "route", "show", "default"].
        timeout_s: Optional timeout in seconds.
        tool_name: Friendly tool name used in error messages.

    Returns:
        CommandResult containing return code and captured output.

    Raises:
        RuntimeError: If the command is missing, fails, or times out.
    """
    cmd_list = [str(c) for c in cmd]

    try:
        cp = subprocess.run(
            cmd_list,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(
            f"{tool_name} timed out after {timeout_s}s\n"
            f"Command: {format_cmd(cmd_list)}"
        ) from exc
    except FileNotFoundError as exc:
        raise RuntimeError(
            f"{tool_name} command not found. Is it installed and on PATH?\n"
            f"Command: {format_cmd(cmd_list)}"
        ) from exc

    result = CommandResult(
        cmd=cmd_list,
        returncode=int(cp.returncode),
        stdout=cp.stdout or "",
        stderr=cp.stderr or "",
    )

    if result.returncode != 0:
        raise RuntimeError(
            f"{tool_name} failed with exit code {result.returncode}\n"
            f"Command: {format_cmd(cmd_list)}\n"
            f"--- stderr ---\n{result.stderr.strip()}\n"
        )

    return result
