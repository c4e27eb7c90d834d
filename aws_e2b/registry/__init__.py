"""Registry publishing.

This module handles:
- ECR authorization and repository creation (boto3)
- Tagging and pushing images with bounded retries
"""

from aws_e2b.registry.ecr import EcrCredentialProvider, RegistryCredentials
from aws_e2b.registry.publish import RegistryPublisher

__all__ = ["EcrCredentialProvider", "RegistryCredentials", "RegistryPublisher"]
