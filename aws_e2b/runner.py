"""External command execution.

This module handles:
- Running external commands (docker, the e2b CLI) with a working directory
  and an environment overlay
- Streaming their output live to the operator while keeping a short tail
  for error classification
- Terminating the child process when the operator interrupts

Pipeline code depends on the CommandRunner protocol so tests can substitute
a recording fake for SubprocessRunner.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, TextIO

from aws_e2b.errors import AwsE2bError

logger = logging.getLogger(__name__)

# Lines of output kept for error messages and failure classification
OUTPUT_TAIL_LINES = 50

# Seconds to wait for a terminated child before killing it
TERMINATE_GRACE_PERIOD = 5.0


class CommandExecutionError(AwsE2bError):
    """Raised when an external command cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "execution_error",
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code


@dataclass
class CommandResult:
    """Result of an external command.

    Attributes:
        command: The command that was executed.
        exit_code: Process exit code.
        output_tail: Last lines of combined stdout/stderr, if captured.
    """

    command: list[str]
    exit_code: int
    output_tail: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return "\n".join(self.output_tail)


class CommandRunner(Protocol):
    """Capability to run an external command and stream its output."""

    def run(
        self,
        cmd: Sequence[str],
        cwd: Path | None = None,
        env_overlay: Mapping[str, str] | None = None,
        input_text: str | None = None,
        capture_output: bool = True,
    ) -> CommandResult: ...


class SubprocessRunner:
    """CommandRunner backed by subprocess.

    With capture_output the child's combined output is echoed line by line to
    ``stream`` as it arrives; without it the child inherits the terminal.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    def run(
        self,
        cmd: Sequence[str],
        cwd: Path | None = None,
        env_overlay: Mapping[str, str] | None = None,
        input_text: str | None = None,
        capture_output: bool = True,
    ) -> CommandResult:
        """Run a command to completion.

        Args:
            cmd: Command and arguments.
            cwd: Working directory (current directory if None).
            env_overlay: Variables added to the inherited environment.
            input_text: Text written to the child's stdin, which is then closed.
            capture_output: Pipe and echo output instead of inheriting stdio.

        Returns:
            CommandResult with the exit code and output tail.

        Raises:
            CommandExecutionError: If the command cannot be started.
        """
        argv = list(cmd)
        logger.debug("Executing: %s", shlex.join(argv))
        if cwd is not None:
            logger.debug("Working directory: %s", cwd)

        env: dict[str, str] | None = None
        if env_overlay:
            env = dict(os.environ)
            env.update(env_overlay)

        try:
            proc = subprocess.Popen(
                argv,
                cwd=cwd,
                env=env,
                stdin=subprocess.PIPE if input_text is not None else None,
                stdout=subprocess.PIPE if capture_output else None,
                stderr=subprocess.STDOUT if capture_output else None,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            raise CommandExecutionError(
                f"Failed to execute {argv[0]}: {e}",
                code="execution_error",
            ) from e

        tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        try:
            if input_text is not None and proc.stdin is not None:
                proc.stdin.write(input_text)
                proc.stdin.close()
            if proc.stdout is not None:
                out = self.stream or sys.stdout
                for line in proc.stdout:
                    out.write(line)
                    out.flush()
                    tail.append(line.rstrip("\n"))
            exit_code = proc.wait()
        except KeyboardInterrupt:
            logger.warning("Interrupted, stopping %s", argv[0])
            _terminate(proc)
            raise
        finally:
            if proc.stdout is not None:
                proc.stdout.close()

        return CommandResult(command=argv, exit_code=exit_code, output_tail=list(tail))


def _terminate(proc: subprocess.Popen[str]) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=TERMINATE_GRACE_PERIOD)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


__all__ = [
    "CommandExecutionError",
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
]
