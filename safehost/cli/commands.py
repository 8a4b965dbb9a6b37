"""CLI commands for safehost."""

import asyncio
import json
import sys
from typing import Any, NoReturn

import typer

from safehost import __version__

app = typer.Typer(
    name="safehost",
    help="safehost - safe execution and privilege validation for host setup scripts",
    no_args_is_help=True,
)


def version_callback(value: bool):
    if value:
        typer.echo(f"safehost v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """safehost - safe execution and privilege validation."""
    pass


def _make_context(verbose: bool = False):
    from safehost.config.loader import load_config
    from safehost.core.context import SafetyContext
    from safehost.observability.log_setup import configure_logging

    config = load_config()
    configure_logging(config, console=verbose)
    return SafetyContext.create(config)


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _parse_param(raw: str) -> tuple[str, Any]:
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise typer.BadParameter(f"expected key=value, got {raw!r}")
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    if isinstance(parsed, float):
        parsed = value
    return key.strip(), parsed


# ============================================================================
# Validation
# ============================================================================


@app.command("check-path")
def check_path(
    path: str = typer.Argument(..., help="Path to check against the allowed base directories"),
    operation: str = typer.Option(None, "--operation", "-o", help="Operation whose category applies"),
    verbose: bool = typer.Option(False, "--verbose", help="Log to the console"),
):
    """Resolve a path and check it stays inside the allowed directories."""
    from safehost.core.errors import SafetyError
    from safehost.core.types import FieldKind
    from safehost.guard.rules import build_default_registry
    from safehost.guard.sanitizer import Sanitizer

    ctx = _make_context(verbose)
    allow_system = False
    try:
        if operation:
            allow_system = build_default_registry().require(operation).category.is_platform_service
        resolved = Sanitizer(ctx).sanitize(path, FieldKind.PATH, allow_system_config=allow_system)
    except SafetyError as e:
        _fail(e.message)
    typer.echo(resolved)


@app.command()
def validate(
    operation: str = typer.Argument(..., help="Operation name, e.g. postgresql-manual-setup"),
    param: list[str] = typer.Option(None, "--param", "-p", help="Parameter as key=value (repeatable)"),
    verbose: bool = typer.Option(False, "--verbose", help="Log to the console"),
):
    """Validate operation parameters without executing anything."""
    from safehost.core.errors import SafetyError
    from safehost.guard.validation import OperationValidator
    from safehost.observability.redaction import sanitize_for_logging

    ctx = _make_context(verbose)
    parameters = dict(_parse_param(raw) for raw in param or [])
    try:
        OperationValidator(ctx).validate_operation(operation, parameters)
    except SafetyError as e:
        _fail(e.message)
    typer.echo(json.dumps(sanitize_for_logging(parameters, "cli"), indent=2, ensure_ascii=False))


# ============================================================================
# Privileges & platform
# ============================================================================


@app.command()
def privileges(
    operation: str = typer.Argument(..., help="Operation name"),
    probe: bool = typer.Option(False, "--probe", help="Run the host probes"),
    verbose: bool = typer.Option(False, "--verbose", help="Log to the console"),
):
    """Show the privileges an operation needs, optionally probing the host."""
    from safehost.core.errors import PrivilegeError
    from safehost.guard.privileges import PrivilegeResolver

    ctx = _make_context(verbose)
    resolver = PrivilegeResolver(ctx)
    requirements = resolver.get_requirements(operation)
    typer.echo(f"Requirements: {', '.join(p.value for p in requirements)}")
    typer.echo(f"Requires sudo: {'yes' if resolver.requires_sudo(operation) else 'no'}")
    if not probe:
        return

    try:
        snapshot = asyncio.run(resolver.validate_privileges(operation, requirements))
    except PrivilegeError as e:
        _fail(e.message)
    typer.echo(json.dumps(snapshot.to_dict(), indent=2))


@app.command()
def compat(
    component: str = typer.Argument(..., help="Component: postgresql, redis, docker, pm2, nginx"),
    platform: str = typer.Option(None, "--platform", help="linux, darwin or win32 (default: this host)"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
):
    """Look up component support for a platform (advisory only)."""
    from safehost.core.context import normalize_platform
    from safehost.platform.compat import CompatibilityMatrix

    entry = CompatibilityMatrix().is_supported(component, platform or normalize_platform(sys.platform))
    if json_output:
        typer.echo(json.dumps(entry.to_dict(), indent=2))
        return

    status = "supported" if entry.supported else "not supported"
    typer.echo(f"{entry.component} on {entry.platform}: {status}")
    if entry.service_manager:
        typer.echo(f"  service manager: {entry.service_manager}")
    if entry.package_manager:
        typer.echo(f"  package manager: {entry.package_manager}")
    if entry.alternatives:
        typer.echo(f"  alternatives: {', '.join(entry.alternatives)}")
    if entry.notes:
        typer.echo(f"  notes: {entry.notes}")


@app.command()
def preflight(
    json_output: bool = typer.Option(False, "--json", help="Output JSON"),
    deep: bool = typer.Option(False, "--deep", help="Include evidence details"),
):
    """Check host readiness (state dir, disk, memory, compatibility)."""
    from safehost.platform.preflight import collect_preflight

    ctx = _make_context()
    snapshot = collect_preflight(ctx)

    if json_output:
        typer.echo(json.dumps(snapshot.to_dict(deep=deep), indent=2, ensure_ascii=False))
    else:
        typer.echo(f"Readiness: {snapshot.readiness}")
        for item in snapshot.evidence:
            typer.echo(f"  [{item.status}] {item.component}: {item.summary}")

    if not snapshot.ready:
        raise typer.Exit(1)


# ============================================================================
# Reports & logs
# ============================================================================


@app.command()
def report():
    """Write safety-report.json for this state directory."""
    from safehost.observability.report import write_safety_report

    ctx = _make_context()
    payload = asyncio.run(write_safety_report(ctx))
    typer.echo(f"Safety report written to {ctx.config.report_path}")
    for item in payload["recommendations"]:
        typer.echo(f"  [{item['priority']}] {item['message']}")


def _format_event(event: dict[str, Any]) -> str:
    parts = [
        str(event.get("ts", "")),
        str(event.get("severity", "")).upper(),
        str(event.get("name", "")),
        str(event.get("operation") or "-"),
        str(event.get("status") or "-"),
    ]
    if event.get("latency_ms") is not None:
        parts.append(f"{event['latency_ms']}ms")
    if event.get("error_message"):
        parts.append(str(event["error_message"]))
    return " | ".join(parts)


@app.command()
def logs(
    operation: str = typer.Option(None, "--operation", "-o", help="Filter by operation name"),
    status: str = typer.Option(None, "--status", "-s", help="Filter by status (ok, failed)"),
    severity: str = typer.Option(None, "--severity", help="Filter by severity (info, error)"),
    error_code: str = typer.Option(None, "--code", help="Filter by error code, e.g. privilege"),
    lines: int = typer.Option(50, "--lines", "-n", help="Number of events to show"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON lines"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Keep printing new events"),
):
    """Show supervisor events from logs/events.jsonl."""
    from safehost.config.loader import load_config
    from safehost.observability.logging_sink import EventFilter, EventLog

    event_log = EventLog.from_config(load_config())
    criteria = EventFilter(operation=operation, status=status, severity=severity, error_code=error_code)

    def _print(event: dict[str, Any]) -> None:
        typer.echo(json.dumps(event, ensure_ascii=False) if json_output else _format_event(event))

    for event in event_log.query(criteria, limit=lines):
        _print(event)

    if follow:
        try:
            for event in event_log.follow(criteria):
                _print(event)
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    app()
