"""Project and user configuration files.

This module provides the pydantic schemas and loaders for:
- The project file `aws_e2b.toml` ([e2b] template parameters, [docker] image source)
- The user file `~/.aws_e2b/config.toml` ([aws] region, [e2b] domain and credentials)

Only the parsed values matter to resolution; see aws_e2b.config for the
precedence rules.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from aws_e2b.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROJECT_FILE_NAME = "aws_e2b.toml"


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class ProjectE2bSection(BaseModel):
    """Schema for the [e2b] section of the project file."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    memory_mb: int | None = Field(default=None, ge=128)
    cpu_count: int | None = Field(default=None, ge=1)
    start_cmd: str | None = None
    ready_cmd: str | None = None
    alias: str | None = None
    template_id: str | None = Field(default=None, alias="templateID")

    @field_validator("start_cmd", "ready_cmd", "alias", "template_id", mode="before")
    @classmethod
    def blank_is_unset(cls, v: Any) -> Any:
        """Treat empty strings as not configured."""
        return _blank_to_none(v)


class ProjectDockerSection(BaseModel):
    """Schema for the [docker] section of the project file."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    dockerfile: str | None = None
    ecr_image: str | None = Field(default=None, alias="ecr-image")
    docker_image: str | None = Field(default=None, alias="dockerimage")

    @field_validator("dockerfile", "ecr_image", "docker_image", mode="before")
    @classmethod
    def blank_is_unset(cls, v: Any) -> Any:
        """Treat empty strings as not configured."""
        return _blank_to_none(v)


class ProjectConfig(BaseModel):
    """Schema for the whole project file."""

    model_config = ConfigDict(extra="ignore")

    e2b: ProjectE2bSection = Field(default_factory=ProjectE2bSection)
    docker: ProjectDockerSection = Field(default_factory=ProjectDockerSection)


class UserAwsSection(BaseModel):
    """Schema for the [aws] section of the user file."""

    model_config = ConfigDict(extra="forbid")

    aws_region: str | None = None

    @field_validator("aws_region", mode="before")
    @classmethod
    def blank_is_unset(cls, v: Any) -> Any:
        """Treat empty strings as not configured."""
        return _blank_to_none(v)


class UserE2bSection(BaseModel):
    """Schema for the [e2b] section of the user file."""

    model_config = ConfigDict(extra="forbid")

    e2b_domain: str | None = None
    e2b_access_token: str | None = Field(default=None, repr=False)
    e2b_api_key: str | None = Field(default=None, repr=False)
    e2b_team_id: str | None = None

    @field_validator(
        "e2b_domain", "e2b_access_token", "e2b_api_key", "e2b_team_id", mode="before"
    )
    @classmethod
    def blank_is_unset(cls, v: Any) -> Any:
        """Treat empty strings as not configured."""
        return _blank_to_none(v)


class UserConfig(BaseModel):
    """Schema for the whole user file."""

    model_config = ConfigDict(extra="ignore")

    aws: UserAwsSection = Field(default_factory=UserAwsSection)
    e2b: UserE2bSection = Field(default_factory=UserE2bSection)


# Docker section keys accepted in addition to the canonical ones
_DOCKER_KEY_ALIASES = {
    "ecr_image": "ecr-image",
    "docker_image": "dockerimage",
    "image": "dockerimage",
}


@dataclass
class LoadedProjectConfig:
    """A parsed project file together with where it came from."""

    config: ProjectConfig
    path: Path | None = None

    @property
    def base_dir(self) -> Path | None:
        """Directory relative Dockerfile paths resolve against."""
        return self.path.parent if self.path is not None else None


def load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return its contents as a dict.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML document.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            f"Failed to parse TOML {path}: {e}", code="invalid_config_file"
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read {path}: {e}", code="unreadable_config_file"
        ) from e


def _normalize_docker_keys(data: dict[str, Any]) -> dict[str, Any]:
    docker = data.get("docker")
    if not isinstance(docker, dict):
        return data
    normalized = dict(docker)
    for alias, canonical in _DOCKER_KEY_ALIASES.items():
        if alias in normalized:
            if canonical in normalized:
                raise ConfigurationError(
                    f"[docker] sets both '{alias}' and '{canonical}'",
                    code="invalid_config_file",
                )
            normalized[canonical] = normalized.pop(alias)
    return {**data, "docker": normalized}


def parse_project_config(data: dict[str, Any], source: str = "<memory>") -> ProjectConfig:
    """Validate project file data.

    Raises:
        ConfigurationError: If the data does not match the schema.
    """
    try:
        return ProjectConfig.model_validate(_normalize_docker_keys(data))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid project configuration {source}:\n{e}",
            code="invalid_config_file",
        ) from e


def parse_user_config(data: dict[str, Any], source: str = "<memory>") -> UserConfig:
    """Validate user file data.

    Raises:
        ConfigurationError: If the data does not match the schema.
    """
    try:
        return UserConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid user configuration {source}:\n{e}",
            code="invalid_config_file",
        ) from e


def load_project_config(
    config_path: Path | None = None,
    cwd: Path | None = None,
) -> LoadedProjectConfig:
    """Load the project file.

    An explicit path must exist. Without one, `aws_e2b.toml` in the working
    directory is used when present, and an empty configuration otherwise.

    Args:
        config_path: Path given with --config.
        cwd: Directory searched for the default file (current directory if None).

    Returns:
        LoadedProjectConfig with the parsed file and its path.

    Raises:
        ConfigurationError: If the file is missing, unreadable, or invalid.
    """
    if config_path is not None:
        if not config_path.is_file():
            raise ConfigurationError(
                f"Specified configuration file does not exist: {config_path}",
                code="config_not_found",
            )
        path = config_path
    else:
        candidate = (cwd or Path.cwd()) / PROJECT_FILE_NAME
        if not candidate.is_file():
            logger.debug("No %s found in %s", PROJECT_FILE_NAME, candidate.parent)
            return LoadedProjectConfig(config=ProjectConfig())
        path = candidate

    logger.debug("Loading project configuration from %s", path)
    config = parse_project_config(load_toml(path), source=str(path))
    return LoadedProjectConfig(config=config, path=path.resolve())


def load_user_config(path: Path) -> UserConfig:
    """Load the user file, returning an empty configuration if it is absent.

    Raises:
        ConfigurationError: If the file exists but is unreadable or invalid.
    """
    if not path.is_file():
        logger.debug("No user configuration at %s", path)
        return UserConfig()
    logger.debug("Loading user configuration from %s", path)
    return parse_user_config(load_toml(path), source=str(path))


__all__ = [
    "PROJECT_FILE_NAME",
    "LoadedProjectConfig",
    "ProjectConfig",
    "ProjectDockerSection",
    "ProjectE2bSection",
    "UserAwsSection",
    "UserConfig",
    "UserE2bSection",
    "load_project_config",
    "load_toml",
    "load_user_config",
    "parse_project_config",
    "parse_user_config",
]
