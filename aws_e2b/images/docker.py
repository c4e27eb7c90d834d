"""Docker CLI commands used to materialize and publish images.

This module handles:
- Composing docker build/pull/tag/push/login commands
- Materializing an image source as a local image
- Running the commands through a CommandRunner

Images are always built and pulled for linux/amd64, the only platform the
e2b hosting environment runs.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import assert_never

from aws_e2b.errors import PublishError
from aws_e2b.runner import CommandResult, CommandRunner
from aws_e2b.types import (
    DefaultBaseImage,
    DockerfileBuild,
    ExistingEcrImage,
    ImageSource,
)

logger = logging.getLogger(__name__)

TARGET_PLATFORM = "linux/amd64"

# Repository name for locally built images before they are tagged for ECR
LOCAL_IMAGE_REPOSITORY = "aws-e2b-temp"


def local_build_tag(now: datetime | None = None) -> str:
    """Return the local tag for an image built from a Dockerfile."""
    now = now or datetime.now(timezone.utc)
    return f"{LOCAL_IMAGE_REPOSITORY}:{int(now.timestamp())}"


def compose_build_command(source: DockerfileBuild, tag: str) -> list[str]:
    """Compose the `docker build` command for a Dockerfile source.

    The context is the Dockerfile's own directory; run it with that directory
    as the working directory.
    """
    return [
        "docker",
        "build",
        "--platform",
        TARGET_PLATFORM,
        "-t",
        tag,
        "-f",
        str(source.dockerfile),
        str(source.context_dir),
    ]


def compose_pull_command(reference: str) -> list[str]:
    """Compose the `docker pull` command for a base image."""
    return ["docker", "pull", "--platform", TARGET_PLATFORM, reference]


def compose_tag_command(source: str, target: str) -> list[str]:
    """Compose the `docker tag` command."""
    return ["docker", "tag", source, target]


def compose_push_command(target: str) -> list[str]:
    """Compose the `docker push` command."""
    return ["docker", "push", target]


def compose_login_command(server: str, username: str) -> list[str]:
    """Compose `docker login`; the password is passed on stdin."""
    return ["docker", "login", server, "--username", username, "--password-stdin"]


def build_image(
    runner: CommandRunner,
    source: DockerfileBuild,
    tag: str | None = None,
) -> str:
    """Build a Dockerfile source into a local image.

    Returns:
        The local image tag.

    Raises:
        PublishError: If the build exits non-zero.
    """
    tag = tag or local_build_tag()
    logger.info("Building image %s from %s", tag, source.dockerfile)
    result = runner.run(compose_build_command(source, tag), cwd=source.context_dir)
    if not result.success:
        raise PublishError(
            f"docker build failed with exit code {result.exit_code}",
            code="build_failed",
        )
    return tag


def pull_image(runner: CommandRunner, reference: str) -> str:
    """Pull a base image.

    Raises:
        PublishError: If the pull exits non-zero.
    """
    logger.info("Pulling image %s", reference)
    result = runner.run(compose_pull_command(reference))
    if not result.success:
        raise PublishError(
            f"docker pull {reference} failed with exit code {result.exit_code}",
            code="pull_failed",
        )
    return reference


def tag_image(runner: CommandRunner, source: str, target: str) -> None:
    """Tag a local image for the registry.

    Raises:
        PublishError: If tagging fails.
    """
    result = runner.run(compose_tag_command(source, target))
    if not result.success:
        raise PublishError(
            f"docker tag {source} {target} failed: {result.output or result.exit_code}",
            code="tag_failed",
        )


def push_image(runner: CommandRunner, target: str) -> CommandResult:
    """Push a tagged image; the caller classifies failures."""
    logger.info("Pushing image %s", target)
    return runner.run(compose_push_command(target))


def docker_login(
    runner: CommandRunner, server: str, username: str, password: str
) -> CommandResult:
    """Log the docker CLI in to a registry."""
    logger.debug("Logging in to %s", server)
    return runner.run(compose_login_command(server, username), input_text=password)


def materialize(runner: CommandRunner, source: ImageSource) -> str:
    """Make an image source available as a local image reference.

    An existing ECR image needs nothing local; its reference is returned as is.
    """
    if isinstance(source, DockerfileBuild):
        return build_image(runner, source)
    if isinstance(source, DefaultBaseImage):
        return pull_image(runner, source.reference)
    if isinstance(source, ExistingEcrImage):
        return source.reference
    assert_never(source)


__all__ = [
    "LOCAL_IMAGE_REPOSITORY",
    "TARGET_PLATFORM",
    "build_image",
    "compose_build_command",
    "compose_login_command",
    "compose_pull_command",
    "compose_push_command",
    "compose_tag_command",
    "docker_login",
    "local_build_tag",
    "materialize",
    "pull_image",
    "push_image",
    "tag_image",
]
