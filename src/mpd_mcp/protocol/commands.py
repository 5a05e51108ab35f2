"""Command serialization.

A command is either a bare name (``"status"``) or a sequence whose first
element is the name and the rest are arguments (``("play", 3)``). Every
argument is sent double-quoted::

    find "artist" "The \\"Band\\""
"""

from __future__ import annotations

from typing import Any, Sequence, Union

IDLE = "idle"
NOIDLE = "noidle"
COMMAND_LIST_BEGIN = "command_list_begin"
COMMAND_LIST_END = "command_list_end"

Command = Union[str, Sequence[Any]]


def quote_argument(arg: Any, escape_backslashes: bool = True) -> str:
    """Render a single argument as a double-quoted token.

    Args:
        arg: Any value; non-strings are converted with ``str()``.
        escape_backslashes: Also escape ``\\`` as ``\\\\``. MPD's tokenizer
            treats a backslash as an escape, so a literal backslash is lost
            unless this is on.
    """
    text = str(arg)
    if "\n" in text:
        raise ValueError(f"Argument must not contain a newline: {text!r}")
    if escape_backslashes:
        text = text.replace("\\", "\\\\")
    return '"' + text.replace('"', '\\"') + '"'


def serialize_command(command: Command, escape_backslashes: bool = True) -> str:
    """Serialize one command to a single protocol line (without the newline)."""
    if isinstance(command, str):
        name, args = command, ()
    else:
        if len(command) == 0:
            raise ValueError("Command sequence must contain at least a name")
        name, *args = command

    name = str(name).strip()
    if not name or "\n" in name:
        raise ValueError(f"Invalid command name: {name!r}")
    if not args:
        return name
    quoted = " ".join(quote_argument(a, escape_backslashes) for a in args)
    return f"{name} {quoted}"


def serialize_command_list(
    commands: Sequence[Command], escape_backslashes: bool = True
) -> str:
    """Wrap several commands in a command list sent as one request.

    The server executes them in order and answers with a single reply,
    the concatenation of each command's data.
    """
    if not commands:
        raise ValueError("Command list must not be empty")
    lines = [COMMAND_LIST_BEGIN]
    lines.extend(serialize_command(c, escape_backslashes) for c in commands)
    lines.append(COMMAND_LIST_END)
    return "\n".join(lines)
