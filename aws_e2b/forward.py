"""Command forwarding to the e2b CLI.

This module handles:
- Deciding whether an invocation is handled natively, forwarded, or rejected
- Checking that the e2b CLI is installed before forwarding
- Injecting e2b credentials into the forwarded command's environment
  without overriding variables the caller already set
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable, Mapping, Sequence
from enum import Enum

from aws_e2b.errors import ForwardingError
from aws_e2b.runner import CommandRunner
from aws_e2b.types import CredentialBundle

logger = logging.getLogger(__name__)

COMPANION_INSTALL_HINT = "npm install -g @e2b/cli"

# Command paths implemented by this tool
NATIVE_COMMANDS = frozenset(
    {
        ("template", "build"),
        ("template", "create"),
        ("template", "list"),
        ("config",),
    }
)

# Root-level options answered by this tool's own CLI
NATIVE_ROOT_OPTIONS = frozenset({"--help", "-h", "--version", "-V"})

# Root-level flags that may precede any subcommand, native or forwarded
ROOT_FLAGS = frozenset({"--verbose", "-v"})

REJECTED_SUBCOMMAND = "auth"


class Route(str, Enum):
    """Where an invocation is handled."""

    NATIVE = "native"
    FORWARD = "forward"
    REJECTED = "rejected"


def split_root_flags(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split leading root flags from the rest of the arguments."""
    index = 0
    while index < len(argv) and argv[index] in ROOT_FLAGS:
        index += 1
    return list(argv[:index]), list(argv[index:])


def command_path(argv: Sequence[str]) -> list[str]:
    """Return the leading subcommand words, up to the first option.

    Root flags before the first subcommand are skipped.
    """
    path: list[str] = []
    for arg in split_root_flags(argv)[1]:
        if arg.startswith("-"):
            break
        path.append(arg)
    return path


def classify(argv: Sequence[str]) -> Route:
    """Decide how an invocation is handled.

    Args:
        argv: Arguments after the program name.

    Returns:
        Route.NATIVE, Route.FORWARD or Route.REJECTED.
    """
    rest = split_root_flags(argv)[1]
    if not rest or rest[0] in NATIVE_ROOT_OPTIONS:
        return Route.NATIVE

    positional = [arg for arg in rest if not arg.startswith("-")]
    if REJECTED_SUBCOMMAND in positional[:2]:
        return Route.REJECTED

    path = command_path(rest)
    if tuple(path[:2]) in NATIVE_COMMANDS or tuple(path[:1]) in NATIVE_COMMANDS:
        return Route.NATIVE
    return Route.FORWARD


def injection_overlay(
    credentials: CredentialBundle, environ: Mapping[str, str]
) -> dict[str, str]:
    """Return the credential variables the caller's environment lacks."""
    return {
        key: value
        for key, value in credentials.as_environment().items()
        if key not in environ
    }


class CommandForwarder:
    """Forwards invocations to the e2b CLI."""

    def __init__(
        self,
        runner: CommandRunner,
        credentials: Callable[[], CredentialBundle],
        executable: str = "e2b",
        which: Callable[[str], str | None] = shutil.which,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize.

        Args:
            runner: Runs the companion CLI.
            credentials: Loads the credential bundle; only called when forwarding.
            executable: Companion CLI executable name or path.
            which: Executable lookup, replaceable in tests.
            environ: Caller environment (os.environ if None).
        """
        self.runner = runner
        self.credentials = credentials
        self.executable = executable
        self.which = which
        self.environ = os.environ if environ is None else environ

    def reject(self, argv: Sequence[str]) -> None:
        """Refuse an invocation that must not be forwarded.

        Raises:
            ForwardingError: Always.
        """
        raise ForwardingError(
            f"aws-e2b does not support the e2b auth command ({' '.join(argv)}); "
            "configure credentials with E2B_ACCESS_TOKEN or "
            "[e2b].e2b_access_token in ~/.aws_e2b/config.toml instead",
            code="auth_not_supported",
        )

    def resolve_executable(self) -> str:
        """Locate the companion CLI.

        Raises:
            ForwardingError: If it is not installed.
        """
        path = self.which(self.executable)
        if path is None:
            raise ForwardingError(
                f"The e2b CLI ('{self.executable}') was not found on PATH. "
                f"Install it with: {COMPANION_INSTALL_HINT}",
                code="companion_not_found",
            )
        return path

    def forward(self, argv: Sequence[str]) -> int:
        """Run the companion CLI with the given arguments.

        Leading root flags belong to this tool and are not passed on.

        Returns:
            The companion CLI's exit code.

        Raises:
            ForwardingError: If the invocation is rejected or the CLI is missing.
        """
        if classify(argv) == Route.REJECTED:
            self.reject(argv)

        args = split_root_flags(argv)[1]
        executable = self.resolve_executable()
        overlay = injection_overlay(self.credentials(), self.environ)
        if overlay:
            logger.debug("Injecting %s into e2b environment", ", ".join(sorted(overlay)))

        result = self.runner.run([executable, *args], env_overlay=overlay, capture_output=False)
        if result.exit_code != 0:
            logger.debug("e2b exited with code %d", result.exit_code)
        return result.exit_code


__all__ = [
    "COMPANION_INSTALL_HINT",
    "NATIVE_COMMANDS",
    "ROOT_FLAGS",
    "CommandForwarder",
    "Route",
    "classify",
    "command_path",
    "injection_overlay",
    "split_root_flags",
]
