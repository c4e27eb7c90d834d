"""Template build service.

This module provides the high-level template API:
- build_template(): run the pipeline for an already resolved BuildConfig
- run_template_build(): resolve configuration, then build with real collaborators
- list_templates(): list templates for the configured account or team

Stages run strictly in sequence and each one aborts the pipeline on failure.
An error leaving a stage is tagged with the stage name before it propagates.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from aws_e2b.config import (
    DEFAULT_E2B_DOMAIN,
    CliOverrides,
    EnvironmentOverrides,
    Settings,
    get_settings,
    load_build_config,
)
from aws_e2b.config_files import load_user_config
from aws_e2b.errors import (
    AwsE2bError,
    BuildFailedError,
    BuildTimedOutError,
    ConfigurationError,
)
from aws_e2b.images.docker import materialize
from aws_e2b.images.source import resolve_image_source
from aws_e2b.registry.ecr import EcrCredentialProvider, RegistryCredentialProvider
from aws_e2b.registry.publish import RegistryPublisher, repository_name
from aws_e2b.runner import CommandRunner, SubprocessRunner
from aws_e2b.templates.api import E2bApiClient
from aws_e2b.templates.orchestrator import BuildApi, BuildOrchestrator
from aws_e2b.types import BuildConfig, BuildOutcome, BuildStatus, TemplateSummary

logger = logging.getLogger(__name__)


@contextmanager
def pipeline_stage(stage: str) -> Iterator[None]:
    """Attach the stage name to any aws_e2b error raised inside the block."""
    logger.debug("Entering stage: %s", stage)
    try:
        yield
    except AwsE2bError as e:
        if e.stage is None:
            e.stage = stage
        logger.debug("Stage %s failed: %s", stage, e.code)
        raise


def build_template(
    config: BuildConfig,
    runner: CommandRunner,
    api: BuildApi,
    credentials: RegistryCredentialProvider,
    settings: Settings | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> BuildOutcome:
    """Run the build pipeline for a resolved configuration.

    Args:
        config: Resolved configuration.
        runner: Runs docker commands.
        api: Remote build API.
        credentials: Registry credential provider.
        settings: Tunables (defaults if None).
        sleep: Sleep function shared by retries and polling.
        clock: Monotonic clock for the polling budget.

    Returns:
        BuildOutcome with status READY.

    Raises:
        ConfigurationError: If the image source is ambiguous or unusable.
        PublishError: If the image cannot be materialized or pushed.
        BuildFailedError: If the remote build fails.
        BuildTimedOutError: If the remote build does not finish in time.
        BuildApiError: If the remote API cannot be used.
    """
    if settings is None:
        settings = get_settings()

    with pipeline_stage("image_source"):
        source = resolve_image_source(config.image_source)

    with pipeline_stage("materialize"):
        local_reference = materialize(runner, source)

    publisher = RegistryPublisher(
        runner,
        credentials,
        retries=settings.push_retries,
        backoff=settings.push_backoff,
        sleep=sleep,
    )
    with pipeline_stage("publish"):
        registry_reference = publisher.publish(
            source,
            local_reference,
            repository_name(config.template_id, config.alias),
        )

    orchestrator = BuildOrchestrator(
        api,
        poll_interval=settings.poll_interval,
        timeout=settings.build_timeout,
        notify_retries=settings.notify_retries,
        max_poll_failures=settings.max_poll_failures,
        clock=clock,
        sleep=sleep,
    )
    with pipeline_stage("notify"):
        ticket = orchestrator.notify(config, registry_reference)

    with pipeline_stage("poll"):
        outcome = orchestrator.poll(ticket, registry_reference)
        if outcome.status == BuildStatus.FAILED:
            raise BuildFailedError(
                ticket.template_id, ticket.build_id, outcome.reason or "no reason given"
            )
        if outcome.status == BuildStatus.TIMED_OUT:
            raise BuildTimedOutError(ticket.template_id, ticket.build_id, settings.build_timeout)

    logger.info("Build completed: template %s", ticket.template_id)
    return outcome


def run_template_build(
    cli: CliOverrides,
    settings: Settings | None = None,
    runner: CommandRunner | None = None,
    cwd: Path | None = None,
) -> BuildOutcome:
    """Resolve configuration and build a template with the real collaborators.

    Configuration errors, including a missing access token, are raised before
    any subprocess or network activity.
    """
    if settings is None:
        settings = get_settings()

    with pipeline_stage("config"):
        config = load_build_config(cli, settings, cwd=cwd)

    with E2bApiClient(
        config.e2b_domain, config.e2b_access_token, timeout=settings.http_timeout
    ) as api:
        return build_template(
            config,
            runner or SubprocessRunner(),
            api,
            EcrCredentialProvider(config.aws_region),
            settings=settings,
        )


def list_templates(
    team_id: str | None = None,
    settings: Settings | None = None,
    api: E2bApiClient | None = None,
) -> list[TemplateSummary]:
    """List templates, for the given team or the user file's team.

    Raises:
        ConfigurationError: If no access token is configured.
        BuildApiError: If the API call fails.
    """
    if settings is None:
        settings = get_settings()

    with pipeline_stage("config"):
        user = load_user_config(settings.user_config)
        env = EnvironmentOverrides()
        token = env.e2b_access_token or user.e2b.e2b_access_token
        if not token:
            raise ConfigurationError(
                "Missing e2b access token: set E2B_ACCESS_TOKEN or configure "
                "[e2b].e2b_access_token in ~/.aws_e2b/config.toml",
                code="missing_access_token",
            )
        domain = env.e2b_domain or user.e2b.e2b_domain or DEFAULT_E2B_DOMAIN
        team = team_id or user.e2b.e2b_team_id

    with pipeline_stage("list"):
        if api is not None:
            return api.list_templates(team)
        with E2bApiClient(domain, token, timeout=settings.http_timeout) as client:
            return client.list_templates(team)


__all__ = [
    "build_template",
    "list_templates",
    "pipeline_stage",
    "run_template_build",
]
