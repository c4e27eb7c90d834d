"""aws-e2b - Build e2b sandbox templates from images published to Amazon ECR.

This package prepares a container image, publishes it to ECR, drives the
remote e2b template build to completion, and forwards every other command
to the official e2b CLI.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
