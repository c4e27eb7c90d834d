"""Configuration settings and resolution for aws_e2b.

Uses pydantic-settings for the tool's own tunables (AWS_E2B_ prefix) and for
the environment tier of template configuration. Each BuildConfig field is
resolved independently along its own precedence chain:

- memory_mb, cpu_count, start_cmd, ready_cmd, alias: CLI > project file > default
- template_id: CLI > project file > absent
- aws_region, e2b_domain: env var > user file > default
- e2b_access_token: env var > user file > error
- e2b_api_key: env var > user file > absent
- e2b_team_id: CLI --team > user file > absent
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, TypeVar

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from aws_e2b.config_files import (
    LoadedProjectConfig,
    UserConfig,
    load_project_config,
    load_user_config,
)
from aws_e2b.errors import ConfigurationError
from aws_e2b.types import BuildConfig, CredentialBundle, ImageSourceMarkers

DEFAULT_MEMORY_MB = 4096
DEFAULT_CPU_COUNT = 4
DEFAULT_START_CMD = ""
DEFAULT_READY_CMD = ""
DEFAULT_ALIAS = ""
DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_E2B_DOMAIN = "e2b.dev"
DEFAULT_BASE_IMAGE = "e2bdev/code-interpreter:latest"

T = TypeVar("T")


def _default_user_config() -> Path:
    """Return the default user configuration path."""
    return Path.home() / ".aws_e2b" / "config.toml"


class Settings(BaseSettings):
    """Operational settings of the tool itself.

    Settings are loaded from environment variables with the AWS_E2B_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="AWS_E2B_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    user_config: Path = Field(
        default_factory=_default_user_config,
        description="Path to the user configuration file",
    )
    companion_cli: str = Field(
        default="e2b",
        description="Executable that unsupported commands are forwarded to",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Remote build
    poll_interval: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between build status queries",
    )
    build_timeout: float = Field(
        default=1800.0,
        gt=0,
        description="Overall budget for the remote build to finish",
    )
    notify_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for each call that starts a remote build",
    )
    max_poll_failures: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Consecutive failed status queries tolerated",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single API request",
    )

    # Registry
    push_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for pushing an image to the registry",
    )
    push_backoff: float = Field(
        default=2.0,
        ge=0,
        description="Base delay in seconds before a push retry, doubled per attempt",
    )


class EnvironmentOverrides(BaseSettings):
    """Environment tier of the template configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    aws_region: str | None = None
    e2b_domain: str | None = None
    e2b_access_token: str | None = Field(default=None, repr=False)
    e2b_api_key: str | None = Field(default=None, repr=False)

    @field_validator("*", mode="before")
    @classmethod
    def blank_is_unset(cls, v: Any) -> Any:
        """Treat empty variables as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


@dataclass(frozen=True)
class CliOverrides:
    """Values supplied on the `template build` command line."""

    config_path: Path | None = None
    memory_mb: int | None = None
    cpu_count: int | None = None
    start_cmd: str | None = None
    ready_cmd: str | None = None
    alias: str | None = None
    template_id: str | None = None
    team_id: str | None = None
    docker_file: Path | None = None
    ecr_image: str | None = None
    base_image: str | None = None


def _first(*candidates: T | None) -> T | None:
    """Return the first candidate that is not None."""
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


def _resolve_path(path: Path, base_dir: Path | None) -> Path:
    if path.is_absolute() or base_dir is None:
        return path
    return base_dir / path


def resolve_image_markers(
    cli: CliOverrides,
    project: LoadedProjectConfig,
    cwd: Path | None = None,
) -> ImageSourceMarkers:
    """Pick the image-source markers from the highest tier that sets any.

    The image source is one choice, so a tier that sets any marker replaces
    every marker of the tiers below it.
    """
    if cli.docker_file is not None or cli.ecr_image is not None or cli.base_image is not None:
        return ImageSourceMarkers(
            dockerfile=(
                _resolve_path(cli.docker_file, cwd or Path.cwd())
                if cli.docker_file is not None
                else None
            ),
            ecr_image=cli.ecr_image,
            base_image=cli.base_image,
            origin="cli",
        )

    docker = project.config.docker
    if docker.dockerfile is not None or docker.ecr_image is not None or docker.docker_image is not None:
        return ImageSourceMarkers(
            dockerfile=(
                _resolve_path(Path(docker.dockerfile), project.base_dir)
                if docker.dockerfile is not None
                else None
            ),
            ecr_image=docker.ecr_image,
            base_image=docker.docker_image,
            origin="project",
        )

    return ImageSourceMarkers()


def resolve_build_config(
    cli: CliOverrides,
    project: LoadedProjectConfig,
    user: UserConfig,
    env: EnvironmentOverrides,
    cwd: Path | None = None,
) -> BuildConfig:
    """Merge the four configuration tiers into a BuildConfig.

    Args:
        cli: Command-line values.
        project: Parsed project file.
        user: Parsed user file.
        env: Environment tier.
        cwd: Directory a relative --docker-file is resolved against.

    Returns:
        Immutable BuildConfig.

    Raises:
        ConfigurationError: If no access token is configured.
    """
    p = project.config.e2b

    access_token = _first(env.e2b_access_token, user.e2b.e2b_access_token)
    if access_token is None:
        raise ConfigurationError(
            "Missing e2b access token: set E2B_ACCESS_TOKEN or configure "
            "[e2b].e2b_access_token in ~/.aws_e2b/config.toml",
            code="missing_access_token",
        )

    return BuildConfig(
        memory_mb=_first(cli.memory_mb, p.memory_mb, DEFAULT_MEMORY_MB),
        cpu_count=_first(cli.cpu_count, p.cpu_count, DEFAULT_CPU_COUNT),
        start_cmd=_first(cli.start_cmd, p.start_cmd, DEFAULT_START_CMD),
        ready_cmd=_first(cli.ready_cmd, p.ready_cmd, DEFAULT_READY_CMD),
        alias=_first(cli.alias, p.alias, DEFAULT_ALIAS),
        template_id=_first(cli.template_id, p.template_id),
        image_source=resolve_image_markers(cli, project, cwd=cwd),
        aws_region=_first(env.aws_region, user.aws.aws_region, DEFAULT_AWS_REGION),
        e2b_domain=_first(env.e2b_domain, user.e2b.e2b_domain, DEFAULT_E2B_DOMAIN),
        e2b_access_token=access_token,
        e2b_api_key=_first(env.e2b_api_key, user.e2b.e2b_api_key),
        e2b_team_id=_first(cli.team_id, user.e2b.e2b_team_id),
    )


def resolve_credentials(user: UserConfig, env: EnvironmentOverrides) -> CredentialBundle:
    """Derive the credentials injected into forwarded commands.

    Unlike resolve_build_config, nothing here is mandatory and no default
    domain is filled in: an absent value is simply not injected.
    """
    return CredentialBundle(
        e2b_domain=_first(env.e2b_domain, user.e2b.e2b_domain),
        e2b_access_token=_first(env.e2b_access_token, user.e2b.e2b_access_token),
        e2b_api_key=_first(env.e2b_api_key, user.e2b.e2b_api_key),
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ConfigurationError: If an AWS_E2B_* variable holds an invalid value.
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid AWS_E2B_* settings:\n{e}", code="invalid_settings") from e


def load_build_config(
    cli: CliOverrides,
    settings: Settings | None = None,
    cwd: Path | None = None,
) -> BuildConfig:
    """Read every configuration source and resolve a BuildConfig.

    Raises:
        ConfigurationError: If a file is invalid or a mandatory value is missing.
    """
    if settings is None:
        settings = get_settings()
    project = load_project_config(cli.config_path, cwd=cwd)
    user = load_user_config(settings.user_config)
    return resolve_build_config(cli, project, user, EnvironmentOverrides(), cwd=cwd)


def load_credentials(settings: Settings | None = None) -> CredentialBundle:
    """Read the user file and environment and derive the credential bundle."""
    if settings is None:
        settings = get_settings()
    user = load_user_config(settings.user_config)
    return resolve_credentials(user, EnvironmentOverrides())


def mask_secret(value: str | None) -> str | None:
    """Mask all but the last four characters of a secret."""
    if value is None:
        return None
    if len(value) <= 4:
        return "****"
    return "****" + value[-4:]


def describe_configuration(
    settings: Settings,
    project: LoadedProjectConfig,
    user: UserConfig,
    env: EnvironmentOverrides,
    cli: CliOverrides | None = None,
) -> dict[str, Any]:
    """Return the effective configuration with secrets masked.

    Unlike resolve_build_config this never fails on a missing access token.
    """
    cli = cli or CliOverrides()
    p = project.config.e2b
    markers = resolve_image_markers(cli, project)
    return {
        "project_file": str(project.path) if project.path else None,
        "user_file": str(settings.user_config),
        "template": {
            "memory_mb": _first(cli.memory_mb, p.memory_mb, DEFAULT_MEMORY_MB),
            "cpu_count": _first(cli.cpu_count, p.cpu_count, DEFAULT_CPU_COUNT),
            "start_cmd": _first(cli.start_cmd, p.start_cmd, DEFAULT_START_CMD),
            "ready_cmd": _first(cli.ready_cmd, p.ready_cmd, DEFAULT_READY_CMD),
            "alias": _first(cli.alias, p.alias, DEFAULT_ALIAS),
            "template_id": _first(cli.template_id, p.template_id),
        },
        "image_source": {
            "origin": markers.origin,
            "dockerfile": str(markers.dockerfile) if markers.dockerfile else None,
            "ecr_image": markers.ecr_image,
            "base_image": markers.base_image,
        },
        "aws_region": _first(env.aws_region, user.aws.aws_region, DEFAULT_AWS_REGION),
        "e2b_domain": _first(env.e2b_domain, user.e2b.e2b_domain, DEFAULT_E2B_DOMAIN),
        "e2b_access_token": mask_secret(
            _first(env.e2b_access_token, user.e2b.e2b_access_token)
        ),
        "e2b_api_key": mask_secret(_first(env.e2b_api_key, user.e2b.e2b_api_key)),
        "e2b_team_id": _first(cli.team_id, user.e2b.e2b_team_id),
        "settings": json.loads(settings.model_dump_json()),
    }


__all__ = [
    "DEFAULT_AWS_REGION",
    "DEFAULT_BASE_IMAGE",
    "DEFAULT_CPU_COUNT",
    "DEFAULT_E2B_DOMAIN",
    "DEFAULT_MEMORY_MB",
    "CliOverrides",
    "EnvironmentOverrides",
    "Settings",
    "describe_configuration",
    "get_settings",
    "load_build_config",
    "load_credentials",
    "mask_secret",
    "resolve_build_config",
    "resolve_credentials",
    "resolve_image_markers",
]
