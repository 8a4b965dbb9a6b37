"""Privilege resolution: requirement table, host probes and a TTL cache."""

from __future__ import annotations

import asyncio
import csv
import getpass
import io
import os
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable

import httpx
from loguru import logger

from safehost.core.errors import PrivilegeError
from safehost.core.types import Privilege, PrivilegeSnapshot

if TYPE_CHECKING:
    from safehost.core.context import SafetyContext

_FS = (Privilege.FILESYSTEM,)

REQUIREMENTS: dict[str, tuple[Privilege, ...]] = {
    "client-deps-install": _FS,
    "server-deps-install": _FS,
    "template-deps-install": _FS,
    "deps-install": _FS,
    "security-scan": _FS,
    "security-policies": _FS,
    "vulnerability-monitoring": _FS,
    "security-report": _FS,
    "compliance-check": _FS,
    "postgresql": _FS,
    "redis": _FS,
    "docker": _FS,
    "nginx": (Privilege.SUDO, Privilege.FILESYSTEM),
    "pm2": _FS,
    "template": _FS,
    "system": (Privilege.SUDO,),
    "install": (Privilege.SUDO,),
    "network": (Privilege.NETWORK,),
    "filesystem": _FS,
}

DEPENDENCY_OPERATIONS = frozenset(
    {"client-deps-install", "server-deps-install", "template-deps-install", "deps-install"}
)
SUDO_MARKERS = ("install", "systemctl", "service", "apt", "yum", "dnf", "pacman", "brew", "system")
SENSITIVE_MARKERS = ("systemctl", "service-stop", "rm -rf", "format", "fdisk", "mkfs")
PACKAGE_MANAGERS = ("apt", "yum", "dnf", "pacman")

REQUIRED_GROUPS: dict[str, tuple[str, ...]] = {
    "linux": ("sudo", "wheel", "docker"),
    "darwin": ("admin", "wheel"),
    "win32": ("Administrators", "docker-users"),
}

REMEDIATION: dict[Privilege, str] = {
    Privilege.SUDO: "Configure non-interactive sudo for this user or run from an account with sudo access",
    Privilege.DOCKER: "Add the user to the docker group (usermod -aG docker <user>) and start a new login session",
    Privilege.NETWORK: "Check network connectivity and proxy settings",
    Privilege.FILESYSTEM: "Ensure the target directory exists and is writable by the current user",
}


class PrivilegeCache:
    """Probe results keyed ``"<privilege>:<operation>"`` with a TTL.

    Each key has its own :class:`asyncio.Lock` so concurrent callers for the
    same key share a single probe.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[bool, float]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> bool | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        has_privilege, captured_at = entry
        if self._clock() - captured_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return has_privilege

    def set(self, key: str, has_privilege: bool) -> None:
        self._entries[key] = (has_privilege, self._clock())

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get_or_probe(self, key: str, probe: Callable[[], Awaitable[bool]]) -> bool:
        async with self.lock_for(key):
            cached = self.get(key)
            if cached is not None:
                return cached
            result = await probe()
            self.set(key, result)
            return result

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()

    def __len__(self) -> int:
        return len(self._entries)


class PrivilegeResolver:
    """Decide which capabilities an operation needs and whether the host has them."""

    def __init__(
        self,
        context: SafetyContext,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._ctx = context
        self._transport = transport

    @property
    def cache(self) -> PrivilegeCache:
        return self._ctx.privilege_cache

    # ------------------------------------------------------------------
    # Requirement lookup
    # ------------------------------------------------------------------

    @staticmethod
    def get_requirements(operation: str) -> tuple[Privilege, ...]:
        """Requirements of the longest table key contained in ``operation``."""
        matches = [key for key in REQUIREMENTS if key in operation]
        if not matches:
            return _FS
        return REQUIREMENTS[max(matches, key=len)]

    @staticmethod
    def requires_sudo(operation: str) -> bool:
        if operation in DEPENDENCY_OPERATIONS:
            return False
        return any(marker in operation for marker in SUDO_MARKERS)

    @staticmethod
    def is_sensitive(operation: str) -> bool:
        return any(marker in operation for marker in SENSITIVE_MARKERS)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_privileges(
        self,
        operation: str,
        requirements: tuple[Privilege, ...] | list[Privilege] | None = None,
        *,
        target_dir: str | Path | None = None,
    ) -> PrivilegeSnapshot:
        """Probe every required privilege; raise :class:`PrivilegeError` on the first gap."""
        if requirements is None:
            requirements = self.get_requirements(operation)
        logger.info("Validating privileges for operation: {}", operation)

        try:
            user, uid = self._user_identity()
            is_elevated = await self._is_elevated()
            if is_elevated:
                logger.warning("Running as root/administrator is not recommended")
            groups = await self._groups()
            self._warn_missing_groups(groups)

            await self._platform_checks(operation, is_elevated)

            for privilege in requirements:
                await self._check_privilege(Privilege(privilege), operation, target_dir)

            has_sudo = False
            if self.requires_sudo(operation):
                has_sudo = await self._probe_sudo()
                if not has_sudo:
                    raise PrivilegeError(
                        f'Operation "{operation}" requires sudo access, but sudo is not available',
                        operation=operation,
                        privilege=Privilege.SUDO.value,
                        remediation=REMEDIATION[Privilege.SUDO],
                    )
                if self.is_sensitive(operation):
                    logger.warning("Sensitive operation {} runs with sudo", operation)
            elif Privilege.SUDO in requirements:
                has_sudo = True
        except PrivilegeError as e:
            logger.error("Privilege validation failed for {}: {}", operation, e.message)
            raise

        self._ctx.metrics.increment("privilege_checks")
        logger.info("Privilege validation passed for: {}", operation)
        return PrivilegeSnapshot(
            user=user,
            uid=uid,
            platform=self._ctx.platform,
            is_elevated=is_elevated,
            has_sudo=has_sudo,
            groups=tuple(groups),
        )

    async def current_privileges(self) -> PrivilegeSnapshot:
        """Fresh snapshot of the current process identity and capabilities."""
        user, uid = self._user_identity()
        return PrivilegeSnapshot(
            user=user,
            uid=uid,
            platform=self._ctx.platform,
            is_elevated=await self._is_elevated(),
            has_sudo=await self._probe_sudo(),
            groups=tuple(await self._groups()),
        )

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Privilege cache cleared")

    async def _check_privilege(
        self,
        privilege: Privilege,
        operation: str,
        target_dir: str | Path | None,
    ) -> None:
        key = f"{privilege.value}:{operation}"
        if privilege is Privilege.FILESYSTEM and target_dir is not None:
            key = f"{key}:{Path(target_dir)}"
        has_privilege = await self.cache.get_or_probe(
            key, lambda: self._probe(privilege, target_dir)
        )
        if not has_privilege:
            raise PrivilegeError(
                f"Missing required privilege: {privilege.value} for operation: {operation}",
                operation=operation,
                privilege=privilege.value,
                remediation=REMEDIATION[privilege],
            )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def _user_identity(self) -> tuple[str, int | None]:
        try:
            user = getpass.getuser()
        except (OSError, KeyError) as e:
            raise PrivilegeError(f"Invalid user context: {e}", privilege="user") from e
        if not user:
            raise PrivilegeError("Invalid user context: user name is empty", privilege="user")
        uid = os.getuid() if hasattr(os, "getuid") else None
        return user, uid

    async def _is_elevated(self) -> bool:
        if self._ctx.platform == "win32":
            result = await self._ctx.runner.run(
                ["net", "session"], timeout=self._ctx.config.privileges.command_probe_timeout
            )
            return result.ok
        return hasattr(os, "geteuid") and os.geteuid() == 0

    async def _groups(self) -> list[str]:
        if self._ctx.platform == "win32":
            result = await self._ctx.runner.run(
                ["whoami", "/groups", "/fo", "csv", "/nh"],
                timeout=self._ctx.config.privileges.command_probe_timeout,
            )
            if not result.ok:
                logger.warning("Could not read user groups: {}", result.stderr.strip())
                return []
            return [row[0].split("\\")[-1] for row in csv.reader(io.StringIO(result.stdout)) if row]

        import grp

        names: list[str] = []
        for gid in os.getgroups():
            try:
                names.append(grp.getgrgid(gid).gr_name)
            except KeyError:
                names.append(str(gid))
        return names

    def _warn_missing_groups(self, groups: list[str]) -> None:
        required = REQUIRED_GROUPS.get(self._ctx.platform, ())
        missing = [g for g in required if g not in groups]
        if missing:
            logger.warning("User not in groups: {}", ", ".join(missing))

    # ------------------------------------------------------------------
    # Platform checks
    # ------------------------------------------------------------------

    async def _succeeds(self, argv: list[str]) -> bool:
        result = await self._ctx.runner.run(
            argv, timeout=self._ctx.config.privileges.command_probe_timeout
        )
        return result.ok

    async def _platform_checks(self, operation: str, is_elevated: bool) -> None:
        platform = self._ctx.platform
        if platform == "linux":
            if "service" in operation or "systemctl" in operation:
                if await self._succeeds(["systemctl", "--version"]):
                    logger.info("Systemd access available")
                else:
                    logger.warning("Limited systemd access, service operations may fail")
            if self.requires_sudo(operation) and "install" in operation:
                for manager in PACKAGE_MANAGERS:
                    if await self._succeeds([manager, "--version"]):
                        logger.debug("Package manager found: {}", manager)
                        break
                else:
                    raise PrivilegeError(
                        "No supported package manager available",
                        operation=operation,
                        privilege="package_manager",
                        remediation="Install one of: " + ", ".join(PACKAGE_MANAGERS),
                    )
        elif platform == "darwin":
            if "install" in operation or "brew" in operation:
                if await self._succeeds(["brew", "--version"]):
                    logger.info("Homebrew access available")
                else:
                    logger.warning("Homebrew not available, manual installation may be required")
            if "git" in operation or "make" in operation:
                if not await self._succeeds(["xcode-select", "--version"]):
                    logger.warning("Xcode command line tools not available")
        elif platform == "win32":
            if ("service" in operation or "install" in operation) and not is_elevated:
                logger.warning("Administrator privileges recommended for system operations")
            if "linux" in operation or "bash" in operation:
                if await self._succeeds(["wsl", "--version"]):
                    logger.info("WSL available")
                else:
                    logger.info("WSL not available, using Windows alternatives")

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    async def _probe(self, privilege: Privilege, target_dir: str | Path | None) -> bool:
        if privilege is Privilege.SUDO:
            return await self._probe_sudo()
        if privilege is Privilege.DOCKER:
            return await self._probe_docker()
        if privilege is Privilege.NETWORK:
            return await self._probe_network()
        if privilege is Privilege.FILESYSTEM:
            return await self._probe_filesystem(target_dir)
        logger.warning("Unknown privilege type: {}", privilege)
        return False

    async def _probe_sudo(self) -> bool:
        result = await self._ctx.runner.run(
            ["sudo", "-n", "true"], timeout=self._ctx.config.privileges.sudo_probe_timeout
        )
        return result.ok

    async def _probe_docker(self) -> bool:
        if await self._succeeds(["docker", "ps"]):
            return True
        if await self._succeeds(["sudo", "-n", "docker", "ps"]):
            logger.warning("Docker requires sudo, consider adding the user to the docker group")
            return True
        return False

    async def _probe_network(self) -> bool:
        cfg = self._ctx.config.privileges
        try:
            async with httpx.AsyncClient(
                timeout=cfg.network_probe_timeout, transport=self._transport
            ) as client:
                await client.head(cfg.network_probe_url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning("Limited network access detected: {}", type(e).__name__)
            return False
        return True

    async def _probe_filesystem(self, target_dir: str | Path | None) -> bool:
        if target_dir is None:
            return await asyncio.to_thread(_touch_and_remove, self._ctx.config.temp_dir, create=True)
        return await asyncio.to_thread(_touch_and_remove, Path(target_dir), create=False)


def _nearest_existing(path: Path) -> Path:
    while not path.exists() and path != path.parent:
        path = path.parent
    return path


def _touch_and_remove(directory: Path, *, create: bool) -> bool:
    """Create and delete a scratch file in ``directory``.

    Without ``create`` the nearest existing ancestor is probed instead.
    """
    if not create:
        directory = _nearest_existing(directory)
        if not directory.is_dir():
            logger.debug("Filesystem probe target is not a directory: {}", directory)
            return False
    try:
        if create:
            directory.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="safehost-privilege-", dir=directory)
        os.close(fd)
        os.unlink(name)
    except OSError as e:
        logger.debug("Filesystem probe failed in {}: {}", directory, e)
        return False
    return True
