"""Platform compatibility and preflight checks."""

from safehost.platform.compat import CompatibilityMatrix

__all__ = ["CompatibilityMatrix"]
