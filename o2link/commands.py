"""Named commands that view models expose to the user interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional


class CommandError(LookupError):
    """Raised when a command cannot be found or run."""


@dataclass(frozen=True)
class Command:
    """A command: an action plus an optional factory for its argument object."""

    action: Callable[[Any], Any]
    args_factory: Optional[Callable[[], Any]] = None

    def create_args(self) -> Any:
        """Return a fresh argument object to be filled in, or None if none is taken."""
        if self.args_factory is None:
            return None
        return self.args_factory()

    def execute(self, args: Any = None) -> Any:
        """Run the command with the given arguments."""
        return self.action(args)


def lookup(commands: Mapping[str, Command], name: str, prefix: str = "") -> Command:
    """Find a command by name, raising CommandError when it is missing."""
    try:
        return commands[name]
    except KeyError:
        raise CommandError(f"{prefix}no command '{name}' found") from None