"""Remote build orchestration.

Drives one remote template build through

    NOT_STARTED -> NOTIFYING -> POLLING -> READY | FAILED | TIMED_OUT

Notifying submits the build for the published image and starts it; each of
those calls is retried a small number of times on transport errors. Polling
queries the status at a fixed interval until a terminal status arrives or
the wall-clock budget runs out. Isolated poll failures are tolerated up to a
number of consecutive failures.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol, TypeVar

from aws_e2b.errors import BuildApiError
from aws_e2b.templates.api import TemplateBuildRequest
from aws_e2b.types import (
    BuildConfig,
    BuildOutcome,
    BuildStatus,
    BuildTicket,
    OrchestratorState,
    StatusReport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Floor for a status query's HTTP timeout once the poll budget is nearly spent
MIN_POLL_TIMEOUT = 1.0

_TERMINAL_STATES = {
    BuildStatus.READY: OrchestratorState.READY,
    BuildStatus.FAILED: OrchestratorState.FAILED,
    BuildStatus.TIMED_OUT: OrchestratorState.TIMED_OUT,
}


class BuildApi(Protocol):
    """Remote operations the orchestrator depends on."""

    def submit_build(
        self, request: TemplateBuildRequest, template_id: str | None = None
    ) -> BuildTicket: ...

    def start_build(self, ticket: BuildTicket) -> None: ...

    def get_build_status(
        self, ticket: BuildTicket, timeout: float | None = None
    ) -> StatusReport: ...


class BuildOrchestrator:
    """State machine for a single remote template build."""

    def __init__(
        self,
        api: BuildApi,
        poll_interval: float = 10.0,
        timeout: float = 1800.0,
        notify_retries: int = 3,
        max_poll_failures: int = 3,
        retry_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize.

        Args:
            api: Remote build API.
            poll_interval: Seconds between status queries.
            timeout: Polling budget in seconds.
            notify_retries: Attempts per notify call.
            max_poll_failures: Consecutive failed polls before giving up.
            retry_delay: Base delay between notify attempts.
            clock: Monotonic clock, replaceable in tests.
            sleep: Sleep function, replaceable in tests.
        """
        self.api = api
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.notify_retries = max(1, notify_retries)
        self.max_poll_failures = max(1, max_poll_failures)
        self.retry_delay = retry_delay
        self.clock = clock
        self.sleep = sleep
        self.state = OrchestratorState.NOT_STARTED

    def _transition(self, state: OrchestratorState) -> None:
        logger.debug("Build state %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self, config: BuildConfig, registry_reference: str) -> BuildOutcome:
        """Notify the API of a published image and poll until a terminal status.

        Returns:
            BuildOutcome with status READY, FAILED or TIMED_OUT.

        Raises:
            BuildApiError: If notifying fails or polling loses the API.
        """
        ticket = self.notify(config, registry_reference)
        return self.poll(ticket, registry_reference)

    def notify(self, config: BuildConfig, registry_reference: str) -> BuildTicket:
        """Submit and start the remote build.

        Raises:
            BuildApiError: If a call fails permanently or retries run out.
        """
        if self.state != OrchestratorState.NOT_STARTED:
            raise RuntimeError(f"Cannot notify from state {self.state.value}")
        self._transition(OrchestratorState.NOTIFYING)

        request = TemplateBuildRequest.from_config(config, registry_reference)
        if config.template_id:
            logger.info("Updating existing template %s", config.template_id)
        else:
            logger.info("Creating new template")

        try:
            ticket = self._with_retries(
                "submit build",
                lambda: self.api.submit_build(request, template_id=config.template_id),
            )
            logger.info("buildID: %s", ticket.build_id)
            logger.info("templateID: %s", ticket.template_id)
            self._with_retries("start build", lambda: self.api.start_build(ticket))
        except BuildApiError:
            self._transition(OrchestratorState.FAILED)
            raise

        self._transition(OrchestratorState.POLLING)
        return ticket

    def _with_retries(self, what: str, call: Callable[[], T]) -> T:
        for attempt in range(1, self.notify_retries):
            try:
                return call()
            except BuildApiError as e:
                if not e.retryable:
                    raise
                delay = self.retry_delay * attempt
                logger.warning(
                    "%s attempt %d/%d failed: %s; retrying in %.1fs",
                    what.capitalize(),
                    attempt,
                    self.notify_retries,
                    e,
                    delay,
                )
                self.sleep(delay)
        return call()

    def poll(self, ticket: BuildTicket, registry_reference: str = "") -> BuildOutcome:
        """Poll build status until terminal or the budget is spent.

        Returns:
            BuildOutcome; TIMED_OUT means no terminal status was seen in time.

        Raises:
            BuildApiError: After max_poll_failures consecutive failed polls.
        """
        if self.state != OrchestratorState.POLLING:
            self._transition(OrchestratorState.POLLING)

        started = self.clock()
        deadline = started + self.timeout
        polls = 0
        failures = 0

        while True:
            polls += 1
            try:
                report = self.api.get_build_status(
                    ticket, timeout=max(deadline - self.clock(), MIN_POLL_TIMEOUT)
                )
            except BuildApiError as e:
                failures += 1
                logger.warning(
                    "Status query failed (%d/%d consecutive): %s",
                    failures,
                    self.max_poll_failures,
                    e,
                )
                if failures >= self.max_poll_failures:
                    self._transition(OrchestratorState.FAILED)
                    raise BuildApiError(
                        f"Lost contact with the build API after {failures} "
                        f"consecutive failed status queries: {e}",
                        code="poll_transport_error",
                        status_code=e.status_code,
                    ) from e
            else:
                failures = 0
                logger.info("Current build status: %s", report.raw_status or report.status.value)
                if report.status.is_terminal:
                    return self._finish(
                        report.status, ticket, registry_reference, report.reason, polls, started
                    )

            remaining = deadline - self.clock()
            if remaining <= 0:
                logger.warning("No terminal build status within %gs", self.timeout)
                return self._finish(
                    BuildStatus.TIMED_OUT, ticket, registry_reference, None, polls, started
                )
            self.sleep(min(self.poll_interval, remaining))

    def _finish(
        self,
        status: BuildStatus,
        ticket: BuildTicket,
        registry_reference: str,
        reason: str | None,
        polls: int,
        started: float,
    ) -> BuildOutcome:
        self._transition(_TERMINAL_STATES[status])
        logger.info("Final status: %s", status.value)
        return BuildOutcome(
            status=status,
            ticket=ticket,
            registry_reference=registry_reference,
            reason=reason,
            polls=polls,
            elapsed=self.clock() - started,
        )


__all__ = ["MIN_POLL_TIMEOUT", "BuildApi", "BuildOrchestrator"]
