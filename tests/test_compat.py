"""Tests for the component compatibility matrix."""

import pytest

from safehost.platform.compat import CompatibilityMatrix

matrix = CompatibilityMatrix()


@pytest.mark.parametrize("component", ["postgresql", "redis", "docker", "pm2", "nginx"])
def test_everything_supported_on_linux(component):
    entry = matrix.is_supported(component, "linux")
    assert entry.supported
    assert entry.service_manager == "systemd"


def test_windows_alternatives():
    entry = matrix.is_supported("redis", "win32")
    assert not entry.supported
    assert entry.alternatives == ("postgresql", "sqlite")
    assert "WSL" in entry.notes


def test_unknown_component():
    entry = matrix.is_supported("mongodb", "linux")
    assert not entry.supported
    assert entry.notes == "Unknown component: mongodb"


def test_unknown_platform():
    entry = matrix.is_supported("docker", "freebsd")
    assert not entry.supported
    assert entry.notes == "Platform not defined in compatibility matrix"


def test_component_lookup_is_case_insensitive():
    assert matrix.is_supported("Docker", "darwin").component == "docker"


def test_directories_attached():
    assert "/etc/nginx" in matrix.is_supported("nginx", "linux").directories
    assert matrix.directories("redis", "win32") == ()


def test_recommendations_only_for_unsupported_with_alternatives():
    assert matrix.recommendations("linux") == []
    recs = matrix.recommendations("win32")
    assert sorted(r["component"] for r in recs) == ["nginx", "pm2", "redis"]
    assert all(r["priority"] == "medium" for r in recs)


def test_entry_to_dict_is_json_friendly():
    payload = matrix.is_supported("pm2", "win32").to_dict()
    assert payload["alternatives"] == ["windows-service", "nodemon"]
