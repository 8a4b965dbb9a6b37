"""Raw command policy: allow-prefix list and deny-pattern scan."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    """Result of checking a raw command string."""

    allowed: bool
    reason: str | None = None
    allow_prefix: str | None = None


# Known low-risk command prefixes. A command starting with one of these (at a
# word boundary) skips the deny scan entirely.
DEFAULT_ALLOW_PREFIXES: tuple[str, ...] = (
    "sudo -n true",
    "sudo -u postgres",
    "sudo systemctl",
    "sudo apt",
    "sudo brew",
    "sudo chmod",
    "sudo cp",
    "sudo mkdir",
    "sudo touch",
    "sudo find",
    "sudo grep",
    "sudo sed",
    "sudo cat",
    "sudo ls",
    "sudo ps",
    "sudo whoami",
    "sudo groups",
    "sudo id",
    "net start",
    "net stop",
    "net start |",
    "sc query",
    "sc start",
    "psql -U postgres",
    "psql -d postgres",
    "brew services",
    "systemctl status",
    "systemctl start",
    "systemctl stop",
    "systemctl enable",
    "systemctl restart",
    "groups",
    "whoami",
    "id",
    "whoami /groups",
    "net session",
)

# Each tuple: (compiled pattern, human-readable reason).
_DEFAULT_DENY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    # Shell chaining and substitution
    (re.compile(r";"), "command chaining"),
    (re.compile(r"&&"), "command chaining"),
    (re.compile(r"\|"), "pipe or chaining"),
    (re.compile(r"`"), "backtick substitution"),
    (re.compile(r"\$\("), "command substitution"),
    (re.compile(r"[\r\n]"), "multi-line command"),
    # Destructive filesystem operations
    (re.compile(r"\brm\s+-rf\s+/"), "recursive delete from root"),
    (re.compile(r">\s*/dev"), "redirect to device file"),
    # Pipe-to-shell execution
    (re.compile(r"\b(curl|wget)\b.*\|\s*(sh|bash|zsh|dash)\b", re.I), "pipe-to-shell execution"),
    # Privileged misuse
    (re.compile(r"\bsudo\s+.*--\w"), "sudo with long option"),
    (re.compile(r"\bsudo\s+.*\brm\s+-rf"), "sudo recursive delete"),
    (re.compile(r"\bsudo\s+.*\bchmod\s+777"), "sudo world-writable permission"),
    (re.compile(r"\bsudo\s+.*\bpasswd\s+--"), "sudo password reset"),
    (re.compile(r"\bsudo\s+.*\b(userdel|groupdel|deluser|delgroup)\b"), "user or group deletion"),
)

SHELL_METACHARACTERS = frozenset(";&|<>$`\\\"'*?()[]{}~#!\n\r")


class CommandPolicy:
    """Decide whether a raw command string may run.

    The allow-prefix list takes precedence over the deny scan: a command that
    starts with a listed prefix is accepted even if a later segment would
    match a deny pattern.
    """

    def __init__(
        self,
        *,
        allow_prefixes: tuple[str, ...] = DEFAULT_ALLOW_PREFIXES,
        deny_patterns: tuple[tuple[re.Pattern[str], str], ...] = _DEFAULT_DENY_PATTERNS,
        extra_deny_patterns: list[str] | None = None,
    ) -> None:
        # Longest first so "whoami /groups" is reported over "whoami".
        self._allow = sorted(allow_prefixes, key=len, reverse=True)
        self._deny = list(deny_patterns)
        for raw in extra_deny_patterns or []:
            self._deny.append((re.compile(raw), f"custom rule: {raw}"))

    def matching_prefix(self, command: str) -> str | None:
        for prefix in self._allow:
            if command == prefix or (
                command.startswith(prefix) and command[len(prefix)].isspace()
            ):
                return prefix
        return None

    def check(self, command: str) -> PolicyDecision:
        cmd = command.strip()
        if not cmd:
            return PolicyDecision(allowed=False, reason="empty command")

        prefix = self.matching_prefix(cmd)
        if prefix is not None:
            return PolicyDecision(allowed=True, allow_prefix=prefix)

        for pattern, reason in self._deny:
            if pattern.search(cmd):
                return PolicyDecision(
                    allowed=False,
                    reason=f"Dangerous command pattern detected ({reason})",
                )
        return PolicyDecision(allowed=True)

    @staticmethod
    def needs_shell(command: str) -> bool:
        """Whether ``command`` uses syntax only a shell can interpret."""
        return any(ch in SHELL_METACHARACTERS for ch in command)
