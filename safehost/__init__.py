"""safehost - safe execution and privilege validation for host setup automation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("safehost")
except PackageNotFoundError:
    __version__ = "0.0.0+local"
__app_name__ = "safehost"


# Lazy re-exports so importing the package does not pull in the whole core.
def __getattr__(name: str):
    if name in ("SafetyFramework", "ExecutionSupervisor"):
        from safehost.orchestrator.supervisor import ExecutionSupervisor

        return ExecutionSupervisor
    if name == "SafetyContext":
        from safehost.core.context import SafetyContext

        return SafetyContext
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["ExecutionSupervisor", "SafetyContext", "SafetyFramework", "__version__"]
