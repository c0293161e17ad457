"""Immutable argument-list builder for headscale CLI invocations."""

from dataclasses import dataclass, field
from typing import Any, Optional

CLI_PREFIX = ("headscale", "--output", "json-line")


@dataclass(frozen=True)
class CommandBuilder:
    """
    Builds an argument vector one token at a time.

    Every method returns a new builder; the receiver is never modified,
    so partially built commands can be shared safely.
    """

    args: tuple[str, ...] = field(default_factory=tuple)

    def arg(self, value: Any) -> "CommandBuilder":
        """Append a positional argument."""
        return CommandBuilder(self.args + (str(value),))

    def option(self, name: str, value: Optional[Any]) -> "CommandBuilder":
        """Append ``name value``, or nothing if the value is absent."""
        if value is None or value == "":
            return self
        return CommandBuilder(self.args + (name, str(value)))

    def flag(self, name: str, enabled: bool) -> "CommandBuilder":
        """Append a bare flag if enabled."""
        if not enabled:
            return self
        return CommandBuilder(self.args + (name,))

    def build(self) -> list[str]:
        return list(self.args)


def headscale_command() -> CommandBuilder:
    """Start a headscale CLI command with JSON-line output."""
    return CommandBuilder(CLI_PREFIX)
