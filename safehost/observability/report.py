"""Safety and emergency reports written to the state directory."""

from __future__ import annotations

import asyncio
import json
import platform as host_platform
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from safehost.observability.redaction import sanitize_for_logging

if TYPE_CHECKING:
    from safehost.core.context import SafetyContext

ERROR_RATE_THRESHOLD = 0.1


def build_recommendations(metrics: dict[str, int], platform: str) -> list[dict[str, str]]:
    recommendations: list[dict[str, str]] = []
    if metrics.get("errors", 0) > metrics.get("operations", 0) * ERROR_RATE_THRESHOLD:
        recommendations.append(
            {
                "type": "error-rate",
                "priority": "high",
                "message": "High error rate detected, review error logs and consider rollback",
            }
        )
    if metrics.get("backups", 0) == 0:
        recommendations.append(
            {
                "type": "backup",
                "priority": "medium",
                "message": "No backups created, enable backup for critical operations",
            }
        )
    if platform == "win32":
        recommendations.append(
            {
                "type": "platform",
                "priority": "low",
                "message": "Consider using WSL for full Linux compatibility",
            }
        )
    return recommendations


def _system_info(context: SafetyContext) -> dict[str, Any]:
    return {
        "platform": context.platform,
        "python_version": host_platform.python_version(),
        "uptime": round(context.uptime, 3),
    }


def _max_rss_kb() -> int | None:
    try:
        import resource
    except ImportError:
        return None
    return resource.getrusage(resource.RUSAGE_SELF).ru_maxrss


def build_safety_report(context: SafetyContext) -> dict[str, Any]:
    metrics = context.metrics.snapshot()
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "metrics": metrics,
        "system": _system_info(context),
        "recommendations": build_recommendations(metrics, context.platform),
    }


def build_emergency_report(context: SafetyContext, reason: str) -> dict[str, Any]:
    system = _system_info(context)
    system["max_rss_kb"] = _max_rss_kb()
    return {
        "type": "emergency",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "reason": sanitize_for_logging(reason),
        "system": system,
        "metrics": context.metrics.snapshot(),
    }


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


async def write_safety_report(context: SafetyContext) -> dict[str, Any]:
    """Write ``safety-report.json`` and return its content."""
    report = build_safety_report(context)
    path = context.config.report_path
    await asyncio.to_thread(_write_json, path, report)
    logger.info("Safety report generated: {}", path)
    return report


async def write_emergency_report(context: SafetyContext, reason: str) -> dict[str, Any]:
    report = build_emergency_report(context, reason)
    path = context.config.emergency_report_path
    await asyncio.to_thread(_write_json, path, report)
    logger.error("Emergency report generated: {}", path)
    return report
