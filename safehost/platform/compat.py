"""Static component x platform compatibility table.

The matrix is advisory: callers use it to warn or pick alternatives, it never
blocks an operation.
"""

from __future__ import annotations

from typing import Any

from safehost.core.types import CompatibilityEntry

PLATFORMS = ("linux", "darwin", "win32")

_DIRECTORIES: dict[str, dict[str, tuple[str, ...]]] = {
    "linux": {
        "postgresql": ("/var/lib/postgresql", "/etc/postgresql"),
        "redis": ("/var/lib/redis", "/etc/redis"),
        "docker": ("/var/lib/docker", "/etc/docker"),
        "pm2": ("~/.pm2",),
        "nginx": ("/etc/nginx", "/var/log/nginx"),
    },
    "darwin": {
        "postgresql": ("/usr/local/var/postgres", "/usr/local/etc/postgres"),
        "redis": ("/usr/local/var/db/redis", "/usr/local/etc/redis"),
        "docker": ("~/Library/Containers/com.docker.docker",),
        "pm2": ("~/.pm2",),
        "nginx": ("/usr/local/etc/nginx", "/usr/local/var/log/nginx"),
    },
    "win32": {
        "postgresql": ("C:\\Program Files\\PostgreSQL",),
        "docker": ("C:\\ProgramData\\Docker",),
    },
}

_MATRIX: dict[str, dict[str, dict[str, Any]]] = {
    "postgresql": {
        "linux": {"supported": True, "package_manager": "apt/yum/dnf", "service_manager": "systemd"},
        "darwin": {"supported": True, "package_manager": "brew", "service_manager": "launchd"},
        "win32": {"supported": True, "package_manager": "choco/scoop", "service_manager": "windows"},
    },
    "redis": {
        "linux": {"supported": True, "package_manager": "apt/yum/dnf", "service_manager": "systemd"},
        "darwin": {"supported": True, "package_manager": "brew", "service_manager": "launchd"},
        "win32": {
            "supported": False,
            "alternatives": ("postgresql", "sqlite"),
            "notes": "Use WSL or alternatives",
        },
    },
    "docker": {
        "linux": {"supported": True, "native": True, "service_manager": "systemd"},
        "darwin": {"supported": True, "native": True, "service_manager": "launchd"},
        "win32": {"supported": True, "native": True, "service_manager": "windows"},
    },
    "pm2": {
        "linux": {"supported": True, "native": True, "service_manager": "systemd"},
        "darwin": {"supported": True, "native": True, "service_manager": "launchd"},
        "win32": {
            "supported": False,
            "alternatives": ("windows-service", "nodemon"),
            "notes": "Use Windows alternatives",
        },
    },
    "nginx": {
        "linux": {"supported": True, "native": True, "service_manager": "systemd"},
        "darwin": {"supported": True, "native": True, "service_manager": "launchd"},
        "win32": {
            "supported": False,
            "alternatives": ("iis", "express-static"),
            "notes": "Use IIS or Express static serving",
        },
    },
}


class CompatibilityMatrix:
    """Lookup table answering "is component X supported on platform Y"."""

    def __init__(
        self,
        matrix: dict[str, dict[str, dict[str, Any]]] | None = None,
        directories: dict[str, dict[str, tuple[str, ...]]] | None = None,
    ) -> None:
        self._matrix = matrix if matrix is not None else _MATRIX
        self._directories = directories if directories is not None else _DIRECTORIES

    def components(self) -> list[str]:
        return sorted(self._matrix)

    def directories(self, component: str, platform: str) -> tuple[str, ...]:
        return self._directories.get(platform, {}).get(component, ())

    def is_supported(self, component: str, platform: str) -> CompatibilityEntry:
        component = component.lower()
        row = self._matrix.get(component)
        if row is None:
            return CompatibilityEntry(
                component=component,
                platform=platform,
                supported=False,
                notes=f"Unknown component: {component}",
            )
        data = row.get(platform)
        if data is None:
            return CompatibilityEntry(
                component=component,
                platform=platform,
                supported=False,
                notes="Platform not defined in compatibility matrix",
            )
        return CompatibilityEntry(
            component=component,
            platform=platform,
            supported=data["supported"],
            service_manager=data.get("service_manager"),
            package_manager=data.get("package_manager"),
            native=data.get("native", False),
            alternatives=tuple(data.get("alternatives", ())),
            notes=data.get("notes", ""),
            directories=self.directories(component, platform),
        )

    def entries_for(self, platform: str) -> list[CompatibilityEntry]:
        return [self.is_supported(component, platform) for component in self.components()]

    def recommendations(self, platform: str) -> list[dict[str, Any]]:
        """One medium-priority note per unsupported component that has alternatives."""
        return [
            {
                "platform": platform,
                "component": entry.component,
                "priority": "medium",
                "message": f"{entry.component} not supported on {platform}",
                "alternatives": list(entry.alternatives),
                "notes": entry.notes,
            }
            for entry in self.entries_for(platform)
            if not entry.supported and entry.alternatives
        ]
