"""Command execution layer."""

from safehost.exec.runner import CommandRunner
from safehost.exec.sandbox import CommandPolicy, PolicyDecision

__all__ = ["CommandPolicy", "CommandRunner", "PolicyDecision"]
