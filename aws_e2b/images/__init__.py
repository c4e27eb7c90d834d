"""Base image acquisition.

This module handles:
- Choosing exactly one image source from the configured markers
- Building a Dockerfile or pulling a base image with the docker CLI
"""

from aws_e2b.images.source import describe_image_source, resolve_image_source

__all__ = ["describe_image_source", "resolve_image_source"]
