"""Advisory host readiness snapshot collected before privileged work."""

from __future__ import annotations

import os
import platform as host_platform
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from safehost.core.errors import SchemaValidationError
from safehost.guard.rules import OperationRegistry, build_default_registry
from safehost.platform.compat import CompatibilityMatrix

if TYPE_CHECKING:
    from safehost.core.context import SafetyContext

MIN_MEMORY_BYTES = 1024**3
MIN_DISK_BYTES = 5 * 1024**3

_CRITICAL_COMPONENTS = {"state_dir", "system"}
_STATUS_ORDER = {"ok": 0, "unknown": 1, "degraded": 2, "failed": 3}


def _worst(a: str, b: str) -> str:
    return a if _STATUS_ORDER.get(a, 99) >= _STATUS_ORDER.get(b, 99) else b


@dataclass(slots=True)
class PreflightEvidence:
    """One readiness check with optional machine details."""

    component: str
    status: str
    summary: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self, *, deep: bool = False) -> dict[str, Any]:
        payload = {
            "component": self.component,
            "status": self.status,
            "summary": self.summary,
        }
        if deep:
            payload["details"] = self.details
        return payload


@dataclass(slots=True)
class PreflightSnapshot:
    readiness: str
    degraded: bool
    generated_at: str
    evidence: list[PreflightEvidence] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.readiness != "failed"

    def to_dict(self, *, deep: bool = False) -> dict[str, Any]:
        return {
            "readiness": self.readiness,
            "degraded": self.degraded,
            "generated_at": self.generated_at,
            "evidence": [item.to_dict(deep=deep) for item in self.evidence],
        }


def physical_memory() -> int | None:
    """Total physical memory in bytes, or ``None`` where it cannot be read."""
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    except (AttributeError, ValueError, OSError):
        return None


def _state_dir_evidence(state_dir: Path) -> PreflightEvidence:
    probe = state_dir if state_dir.exists() else state_dir.parent
    writable = probe.exists() and os.access(probe, os.W_OK)
    return PreflightEvidence(
        component="state_dir",
        status="ok" if writable else "failed",
        summary="State directory writable" if writable else "State directory not writable",
        details={"path": str(state_dir)},
    )


def _disk_evidence(state_dir: Path, disk_usage: Callable[[str], Any]) -> tuple[PreflightEvidence, int | None]:
    probe = state_dir
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    try:
        free = disk_usage(str(probe)).free
    except OSError as e:
        return (
            PreflightEvidence("disk", "unknown", f"Disk usage unavailable: {e}", {"path": str(probe)}),
            None,
        )
    status = "ok" if free >= MIN_DISK_BYTES else "degraded"
    return (
        PreflightEvidence(
            "disk",
            status,
            f"{free // 1024**3} GiB free",
            {"path": str(probe), "free_bytes": free, "minimum_bytes": MIN_DISK_BYTES},
        ),
        free,
    )


def _memory_evidence(total: int | None) -> PreflightEvidence:
    if total is None:
        return PreflightEvidence("memory", "unknown", "Physical memory unavailable")
    status = "ok" if total >= MIN_MEMORY_BYTES else "degraded"
    return PreflightEvidence(
        "memory",
        status,
        f"{total // 1024**2} MiB physical memory",
        {"total_bytes": total, "minimum_bytes": MIN_MEMORY_BYTES},
    )


def _system_evidence(registry: OperationRegistry, params: dict[str, Any]) -> PreflightEvidence:
    if any(value is None for value in params.values()):
        missing = sorted(k for k, v in params.items() if v is None)
        return PreflightEvidence(
            "system", "unknown", "System requirements not fully measurable", {"missing": missing}
        )
    try:
        registry.validate_shape("system", dict(params))
    except SchemaValidationError as e:
        return PreflightEvidence("system", "failed", e.message, {"field": e.field, **params})
    return PreflightEvidence("system", "ok", "System requirements met", params)


def _compat_evidence(compat: CompatibilityMatrix, platform: str) -> PreflightEvidence:
    entries = compat.entries_for(platform)
    unsupported = [entry.component for entry in entries if not entry.supported]
    return PreflightEvidence(
        component="compatibility",
        status="degraded" if unsupported else "ok",
        summary=(
            f"Unsupported on {platform}: {', '.join(unsupported)}"
            if unsupported
            else f"All components supported on {platform}"
        ),
        details={"unsupported": unsupported, "recommendations": compat.recommendations(platform)},
    )


def collect_preflight(
    context: SafetyContext,
    *,
    registry: OperationRegistry | None = None,
    compat: CompatibilityMatrix | None = None,
    disk_usage: Callable[[str], Any] = shutil.disk_usage,
    memory_total: Callable[[], int | None] = physical_memory,
) -> PreflightSnapshot:
    """Collect readiness evidence; never raises for an unhealthy host."""
    registry = registry or build_default_registry()
    compat = compat or CompatibilityMatrix()
    state_dir = context.config.state_path

    evidence: list[PreflightEvidence] = [_state_dir_evidence(state_dir)]
    disk, free = _disk_evidence(state_dir, disk_usage)
    total = memory_total()
    evidence.extend([disk, _memory_evidence(total)])
    evidence.append(
        _system_evidence(
            registry,
            {
                "pythonVersion": host_platform.python_version(),
                "platform": context.platform,
                "arch": host_platform.machine().lower() or None,
                "memory": total,
                "diskSpace": free,
            },
        )
    )
    evidence.append(_compat_evidence(compat, context.platform))

    readiness = "ok"
    for item in evidence:
        if item.component in _CRITICAL_COMPONENTS:
            readiness = _worst(readiness, item.status)
    if readiness == "ok":
        for item in evidence:
            if item.status in {"degraded", "failed"}:
                readiness = item.status
                break

    snapshot = PreflightSnapshot(
        readiness=readiness,
        degraded=any(item.status == "degraded" for item in evidence),
        generated_at=datetime.now(timezone.utc).isoformat(),
        evidence=evidence,
    )
    for item in evidence:
        if item.status in {"degraded", "failed"}:
            logger.warning("Preflight {}: {}", item.component, item.summary)
    return snapshot
