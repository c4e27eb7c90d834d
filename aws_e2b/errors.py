"""Error types for aws_e2b.

Every error carries a stable ``code`` for structured handling and an
optional ``stage`` naming the pipeline step it escaped from. The CLI turns
any of these into a red message and a non-zero exit.
"""

from __future__ import annotations


class AwsE2bError(Exception):
    """Base error for all aws_e2b operations."""

    def __init__(self, message: str, code: str = "aws_e2b_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.stage: str | None = None


class ConfigurationError(AwsE2bError):
    """Raised when configuration is missing, malformed, or contradictory."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message, code=code)


class AmbiguousImageSourceError(ConfigurationError):
    """Raised when more than one image source is configured."""

    def __init__(self, selected: list[str]) -> None:
        super().__init__(
            "Image sources are mutually exclusive, but several were configured: "
            + ", ".join(selected),
            code="ambiguous_image_source",
        )
        self.selected = selected


class NoImageSourceError(ConfigurationError):
    """Raised when the configured image source cannot be used."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="no_image_source")


class PublishError(AwsE2bError):
    """Raised when an image cannot be materialized or pushed to the registry.

    Attributes:
        retryable: Whether another attempt could succeed.
        attempts: Number of attempts made before giving up.
    """

    def __init__(
        self,
        message: str,
        code: str = "push_failed",
        retryable: bool = False,
        attempts: int = 1,
    ) -> None:
        super().__init__(message, code=code)
        self.retryable = retryable
        self.attempts = attempts


class BuildApiError(AwsE2bError):
    """Raised when the remote build API cannot be reached or rejects a call."""

    def __init__(
        self,
        message: str,
        code: str = "build_api_error",
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code
        self.retryable = retryable


class BuildFailedError(BuildApiError):
    """Raised when the remote service reports the build as failed."""

    def __init__(self, template_id: str, build_id: str, reason: str) -> None:
        super().__init__(
            f"Build {build_id} of template {template_id} failed: {reason}",
            code="build_failed",
        )
        self.template_id = template_id
        self.build_id = build_id
        self.reason = reason


class BuildTimedOutError(BuildApiError):
    """Raised when no terminal status was observed within the time budget.

    The remote build may still be running.
    """

    def __init__(self, template_id: str, build_id: str, timeout: float) -> None:
        super().__init__(
            f"Build {build_id} of template {template_id} did not finish within "
            f"{timeout:g}s; it may still be running remotely",
            code="build_timed_out",
        )
        self.template_id = template_id
        self.build_id = build_id
        self.timeout = timeout


class ForwardingError(AwsE2bError):
    """Raised when a command cannot be forwarded to the companion CLI."""

    def __init__(self, message: str, code: str = "forwarding_error") -> None:
        super().__init__(message, code=code)


__all__ = [
    "AmbiguousImageSourceError",
    "AwsE2bError",
    "BuildApiError",
    "BuildFailedError",
    "BuildTimedOutError",
    "ConfigurationError",
    "ForwardingError",
    "NoImageSourceError",
    "PublishError",
]
