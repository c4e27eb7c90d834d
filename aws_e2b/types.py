"""Shared type definitions for aws_e2b.

This module contains the immutable records passed between pipeline stages,
kept apart from the stage modules to avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union


class BuildStatus(str, Enum):
    """Status of a remote template build."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        """Whether polling stops at this status."""
        return self in (BuildStatus.READY, BuildStatus.FAILED, BuildStatus.TIMED_OUT)


class OrchestratorState(str, Enum):
    """States of the remote build state machine."""

    NOT_STARTED = "not_started"
    NOTIFYING = "notifying"
    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class DockerfileBuild:
    """Build the base image from a local Dockerfile."""

    dockerfile: Path

    @property
    def context_dir(self) -> Path:
        """Directory the build runs in, so relative COPY paths resolve."""
        return self.dockerfile.parent


@dataclass(frozen=True)
class ExistingEcrImage:
    """Use an image already published to ECR, without pushing."""

    reference: str


@dataclass(frozen=True)
class DefaultBaseImage:
    """Pull a public base image and republish it."""

    reference: str


ImageSource = Union[DockerfileBuild, ExistingEcrImage, DefaultBaseImage]


@dataclass(frozen=True)
class ImageSourceMarkers:
    """Image-source settings as configured, before exclusivity is checked.

    Attributes:
        dockerfile: Dockerfile path, already resolved against its origin.
        ecr_image: Fully qualified ECR image reference.
        base_image: Base image reference.
        origin: Tier the markers came from ("cli", "project" or "default").
    """

    dockerfile: Path | None = None
    ecr_image: str | None = None
    base_image: str | None = None
    origin: str = "default"

    def selected(self) -> list[str]:
        """Return the names of the markers that are set, in priority order."""
        names = []
        if self.dockerfile is not None:
            names.append("dockerfile")
        if self.ecr_image is not None:
            names.append("ecr-image")
        if self.base_image is not None:
            names.append("base-image")
        return names


@dataclass(frozen=True)
class CredentialBundle:
    """e2b credentials derived from configuration for environment injection."""

    e2b_domain: str | None = None
    e2b_access_token: str | None = field(default=None, repr=False)
    e2b_api_key: str | None = field(default=None, repr=False)

    def as_environment(self) -> dict[str, str]:
        """Map the present credentials to the companion CLI's variables."""
        env: dict[str, str] = {}
        if self.e2b_domain:
            env["E2B_DOMAIN"] = self.e2b_domain
        if self.e2b_access_token:
            env["E2B_ACCESS_TOKEN"] = self.e2b_access_token
        if self.e2b_api_key:
            env["E2B_API_KEY"] = self.e2b_api_key
        return env


@dataclass(frozen=True)
class BuildConfig:
    """Fully resolved configuration for one `template build` invocation.

    Only ``template_id``, ``e2b_api_key`` and ``e2b_team_id`` may be None:
    no template ID means a new template is created, no API key means none
    is injected into forwarded commands, and no team means the account's
    default team.
    """

    memory_mb: int
    cpu_count: int
    start_cmd: str
    ready_cmd: str
    alias: str
    image_source: ImageSourceMarkers
    aws_region: str
    e2b_domain: str
    e2b_access_token: str = field(repr=False)
    template_id: str | None = None
    e2b_api_key: str | None = field(default=None, repr=False)
    e2b_team_id: str | None = None

    def credentials(self) -> CredentialBundle:
        """Return the credential view of this configuration."""
        return CredentialBundle(
            e2b_domain=self.e2b_domain,
            e2b_access_token=self.e2b_access_token,
            e2b_api_key=self.e2b_api_key,
        )


@dataclass(frozen=True)
class BuildTicket:
    """Identifiers of an accepted remote build."""

    template_id: str
    build_id: str


@dataclass(frozen=True)
class StatusReport:
    """One status observation returned by the remote build API."""

    status: BuildStatus
    reason: str | None = None
    raw_status: str | None = None


@dataclass
class BuildOutcome:
    """Final result of driving a remote build.

    Attributes:
        status: Terminal status (READY, FAILED or TIMED_OUT).
        ticket: Template and build identifiers.
        registry_reference: Image reference the build was started from.
        reason: Failure reason exactly as reported by the API.
        polls: Number of status queries made.
        elapsed: Seconds spent polling.
    """

    status: BuildStatus
    ticket: BuildTicket
    registry_reference: str
    reason: str | None = None
    polls: int = 0
    elapsed: float = 0.0


@dataclass
class TemplateSummary:
    """A template as returned by the list-templates call."""

    template_id: str
    aliases: list[str] = field(default_factory=list)
    build_status: str | None = None
    cpu_count: int | None = None
    memory_mb: int | None = None
    public: bool = False


__all__ = [
    "BuildConfig",
    "BuildOutcome",
    "BuildStatus",
    "BuildTicket",
    "CredentialBundle",
    "DefaultBaseImage",
    "DockerfileBuild",
    "ExistingEcrImage",
    "ImageSource",
    "ImageSourceMarkers",
    "OrchestratorState",
    "StatusReport",
    "TemplateSummary",
]
