"""Local command execution.

Every host-level side effect (apt, systemctl, the k3s installer) goes
through a CommandRunner so components can be exercised with fakes.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from loguru import logger

log = logger.bind(component="shell")


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Immutable result of a local command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def summary(self, limit: int = 400) -> str:
        text = (self.stderr or self.stdout).strip()
        if len(text) > limit:
            text = "..." + text[-limit:]
        return f"exit {self.exit_code}: {text}" if text else f"exit {self.exit_code}"


# argv, extra env, timeout -> result
type CommandRunner = Callable[..., CommandResult]


def run_command(
    argv: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run argv, merging env over the current environment.

    Missing binaries and timeouts are reported as results (127 and 124, the
    shell conventions) rather than raised, so callers only branch on
    ``success``.
    """
    full_env = {**os.environ, **env} if env else None
    log.debug("Running {cmd}", cmd=argv[0] if argv else "")
    try:
        proc = subprocess.run(
            list(argv),
            env=full_env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        return CommandResult(exit_code=127, stderr=str(e))
    except subprocess.TimeoutExpired:
        return CommandResult(exit_code=124, stderr=f"{argv[0]} timed out after {timeout}s")
    return CommandResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
