"""Tests for privilege requirements, probes and the TTL cache."""

import asyncio

import httpx
import pytest

from safehost.core.errors import PrivilegeError
from safehost.core.types import Privilege
from safehost.guard.privileges import PrivilegeCache, PrivilegeResolver

SUDO_PROBE = ("sudo", "-n", "true")


class TestRequirements:
    def test_longest_key_wins(self):
        assert PrivilegeResolver.get_requirements("nginx-reload") == (Privilege.SUDO, Privilege.FILESYSTEM)
        assert PrivilegeResolver.get_requirements("docker-engine-install") == (Privilege.SUDO,)
        assert PrivilegeResolver.get_requirements("client-deps-install") == (Privilege.FILESYSTEM,)

    def test_unknown_operation_defaults_to_filesystem(self):
        assert PrivilegeResolver.get_requirements("something-else") == (Privilege.FILESYSTEM,)

    def test_dependency_installs_never_require_sudo(self):
        assert not PrivilegeResolver.requires_sudo("client-deps-install")
        assert not PrivilegeResolver.requires_sudo("deps-install")
        assert PrivilegeResolver.requires_sudo("pm2-global-install")
        assert PrivilegeResolver.requires_sudo("docker-engine-install")

    def test_sensitive_markers(self):
        assert PrivilegeResolver.is_sensitive("systemctl-restart")
        assert not PrivilegeResolver.is_sensitive("nginx-list-sites")


class TestPrivilegeCache:
    def test_entries_expire_at_ttl(self, clock):
        cache = PrivilegeCache(ttl_seconds=300, clock=clock)
        cache.set("sudo:nginx-reload", True)
        clock.advance(299)
        assert cache.get("sudo:nginx-reload") is True
        clock.advance(1)
        assert cache.get("sudo:nginx-reload") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_probe(self, clock):
        cache = PrivilegeCache(clock=clock)
        calls = 0

        async def probe() -> bool:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return True

        results = await asyncio.gather(*(cache.get_or_probe("docker:docker", probe) for _ in range(5)))
        assert results == [True] * 5
        assert calls == 1


class TestValidatePrivileges:
    @pytest.mark.asyncio
    async def test_probe_results_are_cached(self, ctx, fake_runner, clock):
        resolver = PrivilegeResolver(ctx)

        snapshot = await resolver.validate_privileges("nginx-reload")
        assert snapshot.has_sudo is True
        assert snapshot.platform == "linux"
        assert fake_runner.count(SUDO_PROBE) == 1

        await resolver.validate_privileges("nginx-reload")
        assert fake_runner.count(SUDO_PROBE) == 1

        clock.advance(301)
        await resolver.validate_privileges("nginx-reload")
        assert fake_runner.count(SUDO_PROBE) == 2

        resolver.clear_cache()
        await resolver.validate_privileges("nginx-reload")
        assert fake_runner.count(SUDO_PROBE) == 3
        assert ctx.metrics.privilege_checks == 4

    @pytest.mark.asyncio
    async def test_missing_sudo_raises_with_remediation(self, ctx, fake_runner):
        fake_runner.results[SUDO_PROBE] = 1
        with pytest.raises(PrivilegeError) as exc_info:
            await PrivilegeResolver(ctx).validate_privileges("system")
        assert exc_info.value.privilege == "sudo"
        assert exc_info.value.remediation
        assert ctx.metrics.privilege_checks == 0

    @pytest.mark.asyncio
    async def test_install_without_package_manager(self, ctx, fake_runner):
        for manager in ("apt", "yum", "dnf", "pacman"):
            fake_runner.results[(manager, "--version")] = 127
        with pytest.raises(PrivilegeError, match="package manager"):
            await PrivilegeResolver(ctx).validate_privileges("docker-engine-install")

    @pytest.mark.asyncio
    async def test_install_with_package_manager(self, ctx, fake_runner):
        fake_runner.results[("apt", "--version")] = 127
        snapshot = await PrivilegeResolver(ctx).validate_privileges("docker-engine-install")
        assert snapshot.has_sudo is True
        assert fake_runner.count(("yum", "--version")) == 1
        assert fake_runner.count(("dnf", "--version")) == 0

    @pytest.mark.asyncio
    async def test_network_probe_uses_http(self, ctx):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        resolver = PrivilegeResolver(ctx, transport=httpx.MockTransport(handler))
        await resolver.validate_privileges("network-check")
        assert [r.method for r in seen] == ["HEAD"]

    @pytest.mark.asyncio
    async def test_network_failure_raises(self, ctx):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        resolver = PrivilegeResolver(ctx, transport=httpx.MockTransport(handler))
        with pytest.raises(PrivilegeError) as exc_info:
            await resolver.validate_privileges("network-check")
        assert exc_info.value.privilege == "network"

    @pytest.mark.asyncio
    async def test_filesystem_probe_uses_target_dir(self, ctx, tmp_path):
        work = tmp_path / "work"
        work.mkdir()
        blocker = work / "not-a-dir"
        blocker.write_text("x")
        resolver = PrivilegeResolver(ctx)
        with pytest.raises(PrivilegeError) as exc_info:
            await resolver.validate_privileges("security-scan", target_dir=blocker)
        assert exc_info.value.privilege == "filesystem"

        await resolver.validate_privileges("security-report", target_dir=work)
        assert list(work.iterdir()) == [blocker]

    @pytest.mark.asyncio
    async def test_filesystem_cache_is_per_directory(self, ctx, tmp_path):
        work = tmp_path / "work"
        work.mkdir()
        blocker = work / "not-a-dir"
        blocker.write_text("x")
        resolver = PrivilegeResolver(ctx)

        await resolver.validate_privileges("security-scan", target_dir=work)
        with pytest.raises(PrivilegeError):
            await resolver.validate_privileges("security-scan", target_dir=blocker / "sub")

    @pytest.mark.asyncio
    async def test_docker_probe_falls_back_to_sudo(self, ctx, fake_runner):
        fake_runner.results[("docker", "ps")] = 1
        resolver = PrivilegeResolver(ctx)
        await resolver.validate_privileges("docker-access", [Privilege.DOCKER])
        assert fake_runner.count(("sudo", "-n", "docker", "ps")) == 1

    @pytest.mark.asyncio
    async def test_current_privileges_snapshot(self, ctx):
        snapshot = await PrivilegeResolver(ctx).current_privileges()
        assert snapshot.user
        assert snapshot.to_dict()["platform"] == "linux"
