"""
Runner module for SSH Deploy.

This module contains the task dependency resolver. The run orchestrator
lives in sshdeploy.runner.orchestrator.
"""

from .dependency_resolver import resolve, resolve_from_root, find_cycle

__all__ = ["resolve", "resolve_from_root", "find_cycle"]
