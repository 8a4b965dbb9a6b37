"""Execution supervision and process lifecycle."""


def __getattr__(name: str):
    if name in ("ExecutionSupervisor", "SafetyFramework"):
        from safehost.orchestrator.supervisor import ExecutionSupervisor

        return ExecutionSupervisor
    if name == "Lifecycle":
        from safehost.orchestrator.lifecycle import Lifecycle

        return Lifecycle
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["ExecutionSupervisor", "Lifecycle", "SafetyFramework"]
