"""Amazon ECR credential provider.

Obtains a docker login token from ECR and makes sure the target repository
exists. AWS identity itself (profiles, keys, roles) is left to boto3's
default credential chain.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from aws_e2b.errors import PublishError

logger = logging.getLogger(__name__)

# ECR error codes meaning the caller is not allowed to proceed
AUTH_DENIED_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "ExpiredTokenException",
        "InvalidClientTokenId",
        "InvalidSignatureException",
        "UnrecognizedClientException",
    }
)


@dataclass(frozen=True)
class RegistryCredentials:
    """Docker login credentials for a registry."""

    server: str
    username: str
    password: str = field(repr=False)

    @property
    def registry_host(self) -> str:
        """Registry host without scheme, as used in image references."""
        host = self.server
        for prefix in ("https://", "http://"):
            if host.startswith(prefix):
                host = host[len(prefix) :]
        return host.rstrip("/")


class RegistryCredentialProvider(Protocol):
    """Source of registry credentials and repositories."""

    def get_credentials(self) -> RegistryCredentials: ...

    def ensure_repository(self, name: str) -> None: ...


def _client_error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


class EcrCredentialProvider:
    """RegistryCredentialProvider for Amazon ECR."""

    def __init__(self, region: str, client: Any | None = None) -> None:
        """Initialize.

        Args:
            region: AWS region of the registry.
            client: Optional preconfigured ECR client.
        """
        self.region = region
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("ecr", region_name=self.region)
        return self._client

    def get_credentials(self) -> RegistryCredentials:
        """Fetch and decode an ECR authorization token.

        Raises:
            PublishError: With code "auth_denied" if AWS refuses the request,
                or "registry_error" for any other failure.
        """
        try:
            response = self.client.get_authorization_token()
        except NoCredentialsError as e:
            raise PublishError(
                "No AWS credentials found for ECR authorization", code="auth_denied"
            ) from e
        except ClientError as e:
            code = _client_error_code(e)
            if code in AUTH_DENIED_CODES:
                raise PublishError(
                    f"ECR authorization denied ({code}): {e}", code="auth_denied"
                ) from e
            raise PublishError(
                f"ECR authorization failed: {e}", code="registry_error"
            ) from e
        except BotoCoreError as e:
            raise PublishError(
                f"ECR authorization failed: {e}", code="registry_error"
            ) from e

        data = response.get("authorizationData") or []
        if not data:
            raise PublishError(
                "ECR returned no authorization data", code="registry_error"
            )
        token = data[0].get("authorizationToken")
        endpoint = data[0].get("proxyEndpoint", "")
        if not token:
            raise PublishError(
                "ECR authorization token missing", code="registry_error"
            )

        try:
            username, password = base64.b64decode(token).decode().split(":", 1)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise PublishError(
                "Failed to decode ECR authorization token", code="registry_error"
            ) from e

        logger.debug("Obtained ECR credentials for %s", endpoint)
        return RegistryCredentials(server=endpoint, username=username, password=password)

    def ensure_repository(self, name: str) -> None:
        """Create the repository unless it already exists.

        Raises:
            PublishError: If the repository cannot be described or created.
        """
        try:
            self.client.describe_repositories(repositoryNames=[name])
            return
        except ClientError as e:
            code = _client_error_code(e)
            if code in AUTH_DENIED_CODES:
                raise PublishError(
                    f"Access to ECR repository {name} denied ({code})",
                    code="auth_denied",
                ) from e
            if code != "RepositoryNotFoundException":
                raise PublishError(
                    f"Failed to describe ECR repository {name}: {e}",
                    code="registry_error",
                ) from e
        except BotoCoreError as e:
            raise PublishError(
                f"Failed to describe ECR repository {name}: {e}",
                code="registry_error",
            ) from e

        logger.info("Creating ECR repository: %s", name)
        try:
            self.client.create_repository(repositoryName=name)
        except ClientError as e:
            code = _client_error_code(e)
            if code == "RepositoryAlreadyExistsException":
                return
            raise PublishError(
                f"Failed to create ECR repository {name}: {e}",
                code="auth_denied" if code in AUTH_DENIED_CODES else "registry_error",
            ) from e
        except BotoCoreError as e:
            raise PublishError(
                f"Failed to create ECR repository {name}: {e}",
                code="registry_error",
            ) from e


__all__ = [
    "AUTH_DENIED_CODES",
    "EcrCredentialProvider",
    "RegistryCredentialProvider",
    "RegistryCredentials",
]
