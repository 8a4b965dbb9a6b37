"""Loguru sink configuration."""

from __future__ import annotations

import sys

from loguru import logger

from safehost.config.schema import Config
from safehost.observability.redaction import redact_text

_CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"


def _redact_record(record) -> bool:
    record["message"] = redact_text(record["message"])
    return True


def configure_logging(config: Config, *, console: bool | None = None) -> list[int]:
    """Replace loguru's default sink with a console sink and ``logs/safety.log``.

    Returns the ids of the installed handlers.
    """
    logger.remove()
    handler_ids: list[int] = []
    level = config.logging.level.upper()

    if config.logging.console if console is None else console:
        handler_ids.append(
            logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, filter=_redact_record)
        )

    if config.logging.file:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        handler_ids.append(
            logger.add(
                config.log_dir / "safety.log",
                level=level,
                rotation=config.logging.rotation,
                serialize=True,
                filter=_redact_record,
            )
        )
    return handler_ids
