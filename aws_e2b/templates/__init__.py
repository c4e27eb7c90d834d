"""Remote template builds.

This module handles:
- The e2b template API client
- The notify/poll build state machine
- The end-to-end build pipeline
"""

from aws_e2b.templates.orchestrator import BuildOrchestrator

__all__ = ["BuildOrchestrator"]
