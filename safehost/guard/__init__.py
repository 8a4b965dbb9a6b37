"""Input guards: sanitization, operation rules, rate limiting and privileges."""

from safehost.guard.ratelimit import RateLimiter
from safehost.guard.rules import FieldRule, OperationDescriptor, OperationRegistry, build_default_registry
from safehost.guard.sanitizer import Sanitizer

__all__ = [
    "FieldRule",
    "OperationDescriptor",
    "OperationRegistry",
    "RateLimiter",
    "Sanitizer",
    "build_default_registry",
]
