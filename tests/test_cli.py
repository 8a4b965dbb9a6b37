"""Tests for the safehost CLI."""

from __future__ import annotations

import asyncio
import json

import pytest
from typer.testing import CliRunner

from safehost.cli.commands import app
from safehost.core.types import DiagnosticEvent
from safehost.observability.logging_sink import EventLog
from safehost.observability.redaction import REDACTED

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    monkeypatch.setenv("SAFEHOST_HOME", str(tmp_path / "state"))
    monkeypatch.delenv("SAFEHOST_PRODUCTION", raising=False)
    monkeypatch.chdir(tmp_path)


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "safehost v" in result.stdout


def test_check_path_accepts_workspace_path(tmp_path) -> None:
    result = runner.invoke(app, ["check-path", "configs/../app.conf"])
    assert result.exit_code == 0
    assert result.stdout.strip() == str((tmp_path / "app.conf").resolve())


def test_check_path_rejects_system_file() -> None:
    result = runner.invoke(app, ["check-path", "/etc/passwd"])
    assert result.exit_code == 1
    assert "Path traversal detected" in result.output


def test_check_path_allows_service_config_for_service_operations() -> None:
    denied = runner.invoke(app, ["check-path", "/etc/nginx/nginx.conf"])
    allowed = runner.invoke(app, ["check-path", "/etc/nginx/nginx.conf", "-o", "nginx-reload"])
    assert denied.exit_code == 1
    assert allowed.exit_code == 0


def test_validate_prints_redacted_parameters() -> None:
    result = runner.invoke(
        app,
        [
            "validate",
            "postgresql-manual-setup",
            "-p", "version=15.2",
            "-p", "port=5433",
            "-p", "username=app_user",
            "-p", "database=app_db",
            "-p", "password=longenoughpass",
        ],
    )
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["version"] == "15.2"
    assert payload["port"] == 5433
    assert payload["password"] == REDACTED


def test_validate_reports_failure() -> None:
    result = runner.invoke(app, ["validate", "docker-network-setup", "-p", "networkName=bad name"])
    assert result.exit_code == 1
    assert "Validation failed for docker-network-setup" in result.output


def test_privileges_lists_requirements() -> None:
    result = runner.invoke(app, ["privileges", "nginx-reload"])
    assert result.exit_code == 0
    assert "Requirements: sudo, filesystem" in result.stdout
    assert "Requires sudo: no" in result.stdout


def test_compat_text_and_json() -> None:
    text = runner.invoke(app, ["compat", "redis", "--platform", "win32"])
    assert text.exit_code == 0
    assert "redis on win32: not supported" in text.stdout
    assert "alternatives: postgresql, sqlite" in text.stdout

    as_json = runner.invoke(app, ["compat", "docker", "--platform", "linux", "--json"])
    assert json.loads(as_json.stdout)["supported"] is True


def test_preflight_json_parses() -> None:
    result = runner.invoke(app, ["preflight", "--json", "--deep"])
    assert result.exit_code in (0, 1)
    payload = json.loads(result.stdout)
    assert payload["readiness"] in {"ok", "unknown", "degraded", "failed"}
    assert "details" in payload["evidence"][0]


def test_report_writes_file(tmp_path) -> None:
    result = runner.invoke(app, ["report"])
    assert result.exit_code == 0
    assert "Safety report written to" in result.stdout
    assert (tmp_path / "state" / "safety-report.json").exists()
    assert "[medium] No backups created" in result.stdout


def _seed_events(tmp_path) -> None:
    sink = EventLog(tmp_path / "state" / "logs" / "events.jsonl")
    asyncio.run(
        sink.emit(
            DiagnosticEvent(
                name="operation.completed",
                component="supervisor",
                operation="redis-manual-setup",
                status="ok",
                latency_ms=12.5,
                attrs={"token": "tok-123"},
            )
        )
    )
    asyncio.run(
        sink.emit(
            DiagnosticEvent(
                name="operation.failed",
                component="supervisor",
                severity="error",
                operation="nginx-reload",
                status="failed",
                error_code="privilege",
                error_message="Missing required privilege: sudo",
            )
        )
    )


def test_logs_command_filters_and_json_output(tmp_path) -> None:
    _seed_events(tmp_path)

    result = runner.invoke(app, ["logs", "--operation", "redis-manual-setup", "--json", "--lines", "10"])

    assert result.exit_code == 0
    rows = [line for line in result.stdout.splitlines() if line.startswith("{")]
    assert len(rows) == 1
    payload = json.loads(rows[0])
    assert payload["status"] == "ok"
    assert payload["attrs"]["token"] == REDACTED


def test_logs_command_text_output(tmp_path) -> None:
    _seed_events(tmp_path)

    result = runner.invoke(app, ["logs", "--status", "failed"])

    assert result.exit_code == 0
    assert "ERROR | operation.failed | nginx-reload | failed" in result.stdout
    assert "Missing required privilege: sudo" in result.stdout


def test_logs_command_filters_by_error_code_and_severity(tmp_path) -> None:
    _seed_events(tmp_path)

    by_code = runner.invoke(app, ["logs", "--code", "privilege", "--json"])
    by_severity = runner.invoke(app, ["logs", "--severity", "info", "--json"])

    assert by_code.exit_code == 0
    code_rows = [json.loads(line) for line in by_code.stdout.splitlines() if line.startswith("{")]
    assert [row["operation"] for row in code_rows] == ["nginx-reload"]
    severity_rows = [json.loads(line) for line in by_severity.stdout.splitlines() if line.startswith("{")]
    assert [row["operation"] for row in severity_rows] == ["redis-manual-setup"]


def test_logs_command_supports_follow_mode(monkeypatch) -> None:
    def _fake_query(self, criteria=None, **kwargs):
        return []

    def _fake_follow(self, criteria=None, **kwargs):
        yield {
            "ts": "2026-02-27T00:00:00+00:00",
            "severity": "info",
            "name": "operation.completed",
            "operation": "docker-setup",
            "status": "ok",
        }

    monkeypatch.setattr(EventLog, "query", _fake_query)
    monkeypatch.setattr(EventLog, "follow", _fake_follow)

    result = runner.invoke(app, ["logs", "--follow"])

    assert result.exit_code == 0
    assert "operation.completed | docker-setup | ok" in result.stdout
