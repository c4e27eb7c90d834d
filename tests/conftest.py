"""Shared fixtures and fakes for aws_e2b tests."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from aws_e2b.registry.ecr import RegistryCredentials
from aws_e2b.runner import CommandResult
from aws_e2b.types import BuildStatus, BuildTicket, StatusReport

ENV_VARS = (
    "AWS_REGION",
    "E2B_DOMAIN",
    "E2B_ACCESS_TOKEN",
    "E2B_API_KEY",
    "AWS_E2B_USER_CONFIG",
    "AWS_E2B_COMPANION_CLI",
    "AWS_E2B_LOG_LEVEL",
    "AWS_E2B_POLL_INTERVAL",
    "AWS_E2B_BUILD_TIMEOUT",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Run every test in an empty directory with no e2b/AWS variables set."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("AWS_E2B_USER_CONFIG", str(home / ".aws_e2b" / "config.toml"))
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


@pytest.fixture
def user_config_path(tmp_path) -> Path:
    """Path of the user file used by Settings in tests."""
    path = tmp_path / "home" / ".aws_e2b" / "config.toml"
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


@dataclass
class RecordedCommand:
    cmd: list[str]
    cwd: Path | None
    env_overlay: dict[str, str]
    input_text: str | None
    capture_output: bool


@dataclass
class FakeRunner:
    """CommandRunner that records invocations instead of spawning processes.

    ``results`` maps a command's first two words (e.g. "docker push") to a
    list of (exit_code, output) consumed in order; unmatched commands succeed.
    """

    results: dict[str, list[tuple[int, str]]] = field(default_factory=dict)
    calls: list[RecordedCommand] = field(default_factory=list)

    def run(
        self,
        cmd: Sequence[str],
        cwd: Path | None = None,
        env_overlay: Mapping[str, str] | None = None,
        input_text: str | None = None,
        capture_output: bool = True,
    ) -> CommandResult:
        argv = list(cmd)
        self.calls.append(
            RecordedCommand(argv, cwd, dict(env_overlay or {}), input_text, capture_output)
        )
        key = " ".join(argv[:2])
        scripted = self.results.get(key)
        if scripted:
            exit_code, output = scripted.pop(0)
            return CommandResult(argv, exit_code, output.splitlines())
        return CommandResult(argv, 0, [])

    def commands(self, prefix: str) -> list[list[str]]:
        return [c.cmd for c in self.calls if " ".join(c.cmd).startswith(prefix)]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


class VirtualClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


class FakeCredentialProvider:
    """Registry credential provider returning fixed credentials."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.repositories: list[str] = []
        self.credential_requests = 0

    def get_credentials(self) -> RegistryCredentials:
        self.credential_requests += 1
        if self.error is not None:
            raise self.error
        return RegistryCredentials(
            server="https://123456789012.dkr.ecr.us-east-1.amazonaws.com",
            username="AWS",
            password="secret-password",
        )

    def ensure_repository(self, name: str) -> None:
        self.repositories.append(name)


@pytest.fixture
def fake_credentials() -> FakeCredentialProvider:
    return FakeCredentialProvider()


class FakeBuildApi:
    """Scripted remote build API.

    ``statuses`` items are StatusReport, BuildStatus, or an exception to raise.
    """

    def __init__(
        self,
        statuses: list[object] | None = None,
        submit_errors: list[Exception] | None = None,
        start_errors: list[Exception] | None = None,
        ticket: BuildTicket | None = None,
    ) -> None:
        self.statuses = list(statuses or [BuildStatus.READY])
        self.submit_errors = list(submit_errors or [])
        self.start_errors = list(start_errors or [])
        self.ticket = ticket or BuildTicket(template_id="tpl-123", build_id="bld-456")
        self.submitted: list[tuple[dict, str | None]] = []
        self.started: list[BuildTicket] = []
        self.status_queries = 0
        self.status_timeouts: list[float | None] = []

    def submit_build(self, request, template_id=None) -> BuildTicket:
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submitted.append((request.to_payload(), template_id))
        if template_id:
            return BuildTicket(template_id=template_id, build_id=self.ticket.build_id)
        return self.ticket

    def start_build(self, ticket: BuildTicket) -> None:
        if self.start_errors:
            raise self.start_errors.pop(0)
        self.started.append(ticket)

    def get_build_status(self, ticket: BuildTicket, timeout: float | None = None) -> StatusReport:
        self.status_queries += 1
        self.status_timeouts.append(timeout)
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, BuildStatus):
            return StatusReport(status=item, raw_status=item.value)
        return item


@pytest.fixture
def make_build_api():
    """Factory for scripted build APIs."""
    return FakeBuildApi
