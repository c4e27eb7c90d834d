"""Registry publisher.

This module handles:
- Passing existing ECR images through without a push
- Computing deterministic, collision-resistant push tags
- Logging in, tagging, and pushing to the registry
- Retrying transient login and push failures with exponential backoff

Authorization denials are never retried.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import assert_never

from aws_e2b.errors import PublishError
from aws_e2b.images.docker import docker_login, push_image, tag_image
from aws_e2b.registry.ecr import RegistryCredentialProvider
from aws_e2b.runner import CommandResult, CommandRunner
from aws_e2b.types import (
    DefaultBaseImage,
    DockerfileBuild,
    ExistingEcrImage,
    ImageSource,
)

logger = logging.getLogger(__name__)

REPOSITORY_PREFIX = "e2bdev/base"

# Push output that indicates the registry refused our credentials
_AUTH_FAILURE_PATTERN = re.compile(
    r"denied|unauthorized|authentication required|no basic auth credentials"
    r"|403 forbidden|authorization token has expired",
    re.IGNORECASE,
)

_INVALID_REPOSITORY_CHARS = re.compile(r"[^a-z0-9._-]+")


def repository_name(template_id: str | None, alias: str | None = None) -> str:
    """Return the ECR repository for a template's base images."""
    name = template_id or alias or "template"
    name = _INVALID_REPOSITORY_CHARS.sub("-", name.lower()).strip("-._") or "template"
    return f"{REPOSITORY_PREFIX}/{name}"


def compute_image_tag(local_reference: str, now: datetime | None = None) -> str:
    """Compute the push tag for a local image.

    The tag combines a UTC timestamp with a digest of the local reference,
    so the same image pushed at the same second always gets the same tag and
    different images never share one.
    """
    now = now or datetime.now(timezone.utc)
    digest = hashlib.sha256(local_reference.encode()).hexdigest()[:12]
    return f"{now.astimezone(timezone.utc):%Y%m%d%H%M%S}-{digest}"


def is_auth_failure(output: str) -> bool:
    """Whether docker output reports an authorization failure."""
    return bool(_AUTH_FAILURE_PATTERN.search(output))


class RegistryPublisher:
    """Publishes materialized images to the registry."""

    def __init__(
        self,
        runner: CommandRunner,
        credentials: RegistryCredentialProvider,
        retries: int = 3,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize.

        Args:
            runner: Runs docker commands.
            credentials: Registry credential provider.
            retries: Total attempts for each of docker login and docker push.
            backoff: Delay before the second attempt, doubled for each later one.
            sleep: Sleep function, replaceable in tests.
            now: Clock for tag computation, replaceable in tests.
        """
        self.runner = runner
        self.credentials = credentials
        self.retries = max(1, retries)
        self.backoff = backoff
        self.sleep = sleep
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.push_count = 0

    def publish(self, source: ImageSource, local_reference: str, repository: str) -> str:
        """Publish an image and return its registry reference.

        Args:
            source: The image source the local image came from.
            local_reference: Local image produced by materialization.
            repository: Target repository name.

        Returns:
            Fully qualified registry reference including tag.

        Raises:
            PublishError: If authorization is denied or every login or push
                attempt fails.
        """
        if isinstance(source, ExistingEcrImage):
            logger.info("Using existing ECR image %s, nothing to push", source.reference)
            return source.reference
        if isinstance(source, (DockerfileBuild, DefaultBaseImage)):
            return self._push(local_reference, repository)
        assert_never(source)

    def _push(self, local_reference: str, repository: str) -> str:
        creds = self.credentials.get_credentials()
        self.credentials.ensure_repository(repository)

        self._with_retries(
            f"docker login to {creds.registry_host}",
            lambda: docker_login(self.runner, creds.server, creds.username, creds.password),
            failure_code="login_failed",
        )

        tag = compute_image_tag(local_reference, self.now())
        target = f"{creds.registry_host}/{repository}:{tag}"
        tag_image(self.runner, local_reference, target)

        def push() -> CommandResult:
            self.push_count += 1
            return push_image(self.runner, target)

        self._with_retries(f"Push of {target}", push, failure_code="push_failed")
        logger.info("Pushed %s", target)
        return target

    def _with_retries(
        self, step: str, attempt_once: Callable[[], CommandResult], failure_code: str
    ) -> None:
        """Run a docker step, retrying transient failures with backoff.

        Raises:
            PublishError: ``auth_denied`` as soon as the registry refuses us,
                otherwise ``failure_code`` once every attempt has failed.
        """
        for attempt in range(1, self.retries + 1):
            result = attempt_once()
            if result.success:
                return

            if is_auth_failure(result.output):
                detail = result.output_tail[-1] if result.output_tail else result.exit_code
                raise PublishError(
                    f"{step} was denied by the registry: {detail}",
                    code="auth_denied",
                    attempts=attempt,
                )

            if attempt < self.retries:
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(
                    "%s: attempt %d/%d failed (exit code %d), retrying in %.1fs",
                    step,
                    attempt,
                    self.retries,
                    result.exit_code,
                    delay,
                )
                self.sleep(delay)

        raise PublishError(
            f"{step} failed after {self.retries} attempts",
            code=failure_code,
            retryable=True,
            attempts=self.retries,
        )


__all__ = [
    "REPOSITORY_PREFIX",
    "RegistryPublisher",
    "compute_image_tag",
    "is_auth_failure",
    "repository_name",
]
