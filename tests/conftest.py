"""Shared fixtures: an isolated SafetyContext and a fake command runner."""

from __future__ import annotations

import shlex
from pathlib import Path

import pytest

from safehost.config.schema import Config
from safehost.core.context import SafetyContext
from safehost.core.types import CommandResult


class FakeRunner:
    """Stand-in for CommandRunner that records calls and never spawns processes.

    ``results`` maps an argv tuple (or a shell string) to a return code or a
    full CommandResult; anything unlisted returns ``default``.
    """

    def __init__(self, results: dict | None = None, default: int = 0) -> None:
        self.results = dict(results or {})
        self.default = default
        self.calls: list = []

    def _result(self, display: str, value) -> CommandResult:
        if isinstance(value, CommandResult):
            return value
        return CommandResult(display, int(value), stderr="" if value == 0 else "failed")

    async def run(self, argv, *, timeout=None, cwd=None, env=None) -> CommandResult:
        key = tuple(argv)
        self.calls.append(key)
        return self._result(shlex.join(argv), self.results.get(key, self.default))

    async def run_shell(self, command, *, timeout=None, cwd=None, env=None) -> CommandResult:
        self.calls.append(command)
        return self._result(command, self.results.get(command, self.default))

    def count(self, key) -> int:
        return sum(1 for call in self.calls if call == key)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(state_dir=str(tmp_path / "state"))


@pytest.fixture
def ctx(config, fake_runner, clock) -> SafetyContext:
    # cwd and home point outside /tmp so traversal checks are meaningful.
    context = SafetyContext(
        config=config,
        clock=clock,
        platform="linux",
        cwd=Path("/srv/app/current"),
        home=Path("/home/tester"),
        runner=fake_runner,
    )
    context.ensure_dirs()
    return context
