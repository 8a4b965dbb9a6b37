"""Post-execution result validators injected per operation or category."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from loguru import logger

from safehost.core.types import OperationCategory

if TYPE_CHECKING:
    from safehost.exec.runner import CommandRunner


@runtime_checkable
class ResultValidator(Protocol):
    """Checks that an operation actually produced the expected outcome."""

    async def validate(self, operation: str, parameters: dict[str, Any], result: Any) -> bool: ...


class GenericResultValidator:
    """Reject ``False`` and mappings that report ``success``/``ok`` as ``False``."""

    async def validate(self, operation: str, parameters: dict[str, Any], result: Any) -> bool:
        if result is False:
            return False
        if isinstance(result, Mapping):
            for key in ("success", "ok"):
                if key in result and result[key] is False:
                    return False
        return True


class TcpServiceValidator:
    """Confirm a service is accepting TCP connections after setup."""

    def __init__(
        self,
        default_port: int,
        *,
        default_host: str = "127.0.0.1",
        timeout: float = 5.0,
    ) -> None:
        self.default_port = default_port
        self.default_host = default_host
        self.timeout = timeout

    async def validate(self, operation: str, parameters: dict[str, Any], result: Any) -> bool:
        host = parameters.get("host") or self.default_host
        port = int(parameters.get("port") or self.default_port)
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("Service check failed for {} on {}:{}: {}", operation, host, port, e)
            return False
        writer.close()
        await writer.wait_closed()
        return True


class DockerDaemonValidator:
    """Confirm the Docker daemon answers ``docker info``."""

    def __init__(self, runner: CommandRunner, timeout: float = 10.0) -> None:
        self._runner = runner
        self.timeout = timeout

    async def validate(self, operation: str, parameters: dict[str, Any], result: Any) -> bool:
        outcome = await self._runner.run(["docker", "info"], timeout=self.timeout)
        if not outcome.ok:
            logger.warning("Docker daemon check failed for {}", operation)
        return outcome.ok


class ValidatorRegistry:
    """Resolve the validator for an operation: by name, then category, then generic."""

    def __init__(self, fallback: ResultValidator | None = None) -> None:
        self._by_operation: dict[str, ResultValidator] = {}
        self._by_category: dict[OperationCategory, ResultValidator] = {}
        self.fallback = fallback or GenericResultValidator()

    def register_operation(self, operation: str, validator: ResultValidator) -> None:
        self._by_operation[operation] = validator

    def register_category(self, category: OperationCategory, validator: ResultValidator) -> None:
        self._by_category[OperationCategory(category)] = validator

    def resolve(self, operation: str, category: OperationCategory | None = None) -> ResultValidator:
        if operation in self._by_operation:
            return self._by_operation[operation]
        if category is not None and category in self._by_category:
            return self._by_category[category]
        return self.fallback
