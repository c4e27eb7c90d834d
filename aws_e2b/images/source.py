"""Image source resolution.

Exactly one of a Dockerfile, an existing ECR image, or a base image may be
configured. Conflicts are rejected rather than resolved by preference, and
with nothing configured the default base image is used.
"""

from __future__ import annotations

import logging
from typing import assert_never

from aws_e2b.config import DEFAULT_BASE_IMAGE
from aws_e2b.errors import AmbiguousImageSourceError, NoImageSourceError
from aws_e2b.types import (
    DefaultBaseImage,
    DockerfileBuild,
    ExistingEcrImage,
    ImageSource,
    ImageSourceMarkers,
)

logger = logging.getLogger(__name__)


def resolve_image_source(
    markers: ImageSourceMarkers,
    default_reference: str = DEFAULT_BASE_IMAGE,
) -> ImageSource:
    """Select the single image source described by the markers.

    Args:
        markers: Image-source markers from the resolved configuration.
        default_reference: Base image used when no marker is set.

    Returns:
        DockerfileBuild, ExistingEcrImage or DefaultBaseImage.

    Raises:
        AmbiguousImageSourceError: If more than one marker is set.
        NoImageSourceError: If the selected Dockerfile does not exist.
    """
    selected = markers.selected()
    if len(selected) > 1:
        raise AmbiguousImageSourceError(selected)

    if markers.dockerfile is not None:
        if not markers.dockerfile.is_file():
            raise NoImageSourceError(f"Dockerfile not found: {markers.dockerfile}")
        source: ImageSource = DockerfileBuild(dockerfile=markers.dockerfile.resolve())
    elif markers.ecr_image is not None:
        source = ExistingEcrImage(reference=markers.ecr_image)
    elif markers.base_image is not None:
        source = DefaultBaseImage(reference=markers.base_image)
    else:
        if not default_reference:
            raise NoImageSourceError("No image source configured and no default base image")
        source = DefaultBaseImage(reference=default_reference)

    logger.info("Image source (%s): %s", markers.origin, describe_image_source(source))
    return source


def describe_image_source(source: ImageSource) -> str:
    """Return a short human-readable description of an image source."""
    if isinstance(source, DockerfileBuild):
        return f"build from {source.dockerfile}"
    if isinstance(source, ExistingEcrImage):
        return f"existing ECR image {source.reference}"
    if isinstance(source, DefaultBaseImage):
        return f"base image {source.reference}"
    assert_never(source)


__all__ = ["describe_image_source", "resolve_image_source"]
