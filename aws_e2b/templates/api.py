"""e2b template API client.

This module handles:
- Submitting template builds (create or update)
- Starting a build once its image is published
- Querying build status
- Listing templates

Every request carries the access token as a bearer Authorization header.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from aws_e2b.errors import BuildApiError
from aws_e2b.types import (
    BuildConfig,
    BuildStatus,
    BuildTicket,
    StatusReport,
    TemplateSummary,
)

logger = logging.getLogger(__name__)

# Timeout for a single API request (seconds)
REQUEST_TIMEOUT = 30.0

# Remote status strings mapped to BuildStatus
STATUS_MAP = {
    "waiting": BuildStatus.PENDING,
    "pending": BuildStatus.PENDING,
    "building": BuildStatus.IN_PROGRESS,
    "ready": BuildStatus.READY,
    "error": BuildStatus.FAILED,
    "failed": BuildStatus.FAILED,
}


class TemplateBuildRequest(BaseModel):
    """Request body for creating or updating a template."""

    model_config = ConfigDict(populate_by_name=True)

    dockerfile: str
    memory_mb: int = Field(alias="memoryMB")
    cpu_count: int = Field(alias="cpuCount")
    start_cmd: str | None = Field(default=None, alias="startCmd")
    ready_cmd: str | None = Field(default=None, alias="readyCmd")
    alias: str | None = None
    team_id: str | None = Field(default=None, alias="teamID")

    @classmethod
    def from_config(cls, config: BuildConfig, registry_reference: str) -> TemplateBuildRequest:
        """Build the request for a resolved configuration and published image."""
        return cls(
            dockerfile=f"FROM {registry_reference}",
            memory_mb=config.memory_mb,
            cpu_count=config.cpu_count,
            start_cmd=config.start_cmd or None,
            ready_cmd=config.ready_cmd or None,
            alias=config.alias or None,
            team_id=config.e2b_team_id,
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def format_bearer_token(token: str) -> str:
    """Add a "Bearer" prefix to an access token if it is missing."""
    trimmed = token.strip()
    if trimmed[:7].lower() == "bearer ":
        return trimmed
    return f"Bearer {trimmed}"


def _extract_reason(payload: dict[str, Any]) -> str | None:
    reason = payload.get("reason")
    if isinstance(reason, dict):
        reason = reason.get("message")
    if reason is None:
        return None
    return reason if isinstance(reason, str) else str(reason)


def parse_status_payload(payload: dict[str, Any]) -> StatusReport:
    """Map a build status response to a StatusReport.

    Unknown status strings are treated as still in progress; the overall
    polling budget bounds how long that can last.
    """
    raw = str(payload.get("status", "")).strip().lower()
    status = STATUS_MAP.get(raw)
    if status is None:
        logger.warning("Unknown build status %r, treating as in progress", raw)
        status = BuildStatus.IN_PROGRESS
    reason = _extract_reason(payload) if status == BuildStatus.FAILED else None
    return StatusReport(status=status, reason=reason, raw_status=raw)


class E2bApiClient:
    """Client for the e2b template API."""

    def __init__(
        self,
        domain: str,
        access_token: str,
        client: httpx.Client | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        """Initialize.

        Args:
            domain: e2b domain; the API lives at https://api.<domain>.
            access_token: Access token, with or without "Bearer " prefix.
            client: Optional HTTPX client instance.
            timeout: Request timeout in seconds.
        """
        self.domain = domain
        self.timeout = timeout
        self._authorization = format_bearer_token(access_token)
        self._client = client or httpx.Client()
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return f"https://api.{self.domain}"

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> E2bApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": self._authorization}
        if json is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout if timeout is None else min(self.timeout, timeout),
            )
        except httpx.TimeoutException as e:
            raise BuildApiError(
                f"Timeout calling {method} {url}",
                code="timeout",
                retryable=True,
            ) from e
        except httpx.RequestError as e:
            raise BuildApiError(
                f"Network error calling {method} {url}: {e}",
                code="network_error",
                retryable=True,
            ) from e

        if response.is_error:
            retryable = response.status_code >= 500 or response.status_code == 429
            raise BuildApiError(
                f"HTTP {response.status_code} from {method} {url}: {response.text}",
                code="http_error",
                status_code=response.status_code,
                retryable=retryable,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise BuildApiError(
                f"Invalid JSON from {response.request.url}: {response.text[:200]}",
                code="invalid_response",
            ) from e

    def submit_build(
        self, request: TemplateBuildRequest, template_id: str | None = None
    ) -> BuildTicket:
        """Create a template, or rebuild an existing one.

        Returns:
            BuildTicket with the template and build identifiers.

        Raises:
            BuildApiError: If the call fails or the response has no build ID.
        """
        path = f"/templates/{template_id}" if template_id else "/templates"
        logger.info("Requesting template build: %s%s", self.base_url, path)
        data = self._json(self._request("POST", path, json=request.to_payload()))
        if not isinstance(data, dict):
            raise BuildApiError("Unexpected template build response", code="invalid_response")

        build_id = data.get("buildID")
        new_template_id = data.get("templateID") or template_id
        if not build_id or not new_template_id:
            raise BuildApiError(
                f"Template build response lacks buildID/templateID: {data}",
                code="invalid_response",
            )
        return BuildTicket(template_id=str(new_template_id), build_id=str(build_id))

    def start_build(self, ticket: BuildTicket) -> None:
        """Tell the API the image is published and the build can start."""
        path = f"/templates/{ticket.template_id}/builds/{ticket.build_id}"
        logger.info("Starting build: %s%s", self.base_url, path)
        self._request("POST", path)

    def get_build_status(
        self, ticket: BuildTicket, timeout: float | None = None
    ) -> StatusReport:
        """Query the status of a build.

        Args:
            ticket: The build to query.
            timeout: Upper bound for this request, never above the client timeout.
        """
        path = f"/templates/{ticket.template_id}/builds/{ticket.build_id}/status"
        data = self._json(self._request("GET", path, timeout=timeout))
        if not isinstance(data, dict):
            raise BuildApiError("Unexpected build status response", code="invalid_response")
        return parse_status_payload(data)

    def list_templates(self, team_id: str | None = None) -> list[TemplateSummary]:
        """List templates visible to the caller, optionally for one team."""
        params = {"teamID": team_id} if team_id else None
        data = self._json(self._request("GET", "/templates", params=params))
        if not isinstance(data, list):
            raise BuildApiError("Unexpected template list response", code="invalid_response")
        return [
            TemplateSummary(
                template_id=str(item.get("templateID", "")),
                aliases=list(item.get("aliases") or []),
                build_status=item.get("buildStatus"),
                cpu_count=item.get("cpuCount"),
                memory_mb=item.get("memoryMB"),
                public=bool(item.get("public", False)),
            )
            for item in data
            if isinstance(item, dict)
        ]


__all__ = [
    "STATUS_MAP",
    "E2bApiClient",
    "TemplateBuildRequest",
    "format_bearer_token",
    "parse_status_payload",
]
