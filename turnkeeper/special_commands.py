"""Recognize slash commands that change how a turn is handled."""

from dataclasses import dataclass
from typing import Literal

SpecialCommandType = Literal["clear", "compact"]


@dataclass(frozen=True)
class SpecialCommand:
    type: SpecialCommandType | None
    argument: str = ""


def parse_special_command(message: str) -> SpecialCommand:
    """Parse ``/clear`` and ``/compact [instructions]``; anything else is plain text."""
    stripped = message.strip()
    if stripped == "/clear":
        return SpecialCommand(type="clear")
    if stripped == "/compact" or stripped.startswith("/compact "):
        return SpecialCommand(type="compact", argument=stripped[len("/compact"):].strip())
    return SpecialCommand(type=None)
