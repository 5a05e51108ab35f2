"""Decoders for the flat ``key: value`` reply payloads."""

from __future__ import annotations

from ..errors import MalformedLineError

SEPARATOR = ": "
CHANGED_KEY = "changed"


def _split_line(line: str) -> tuple[str, str]:
    key, sep, value = line.partition(SEPARATOR)
    if not sep or not key:
        raise MalformedLineError(line)
    return key, value


def parse_key_value(payload: str) -> dict[str, str]:
    """Decode a payload into a single record.

    Empty lines are ignored. A repeated key keeps its last value.

    Raises:
        MalformedLineError: a non-empty line lacks ``": "``.
    """
    result: dict[str, str] = {}
    for line in payload.split("\n"):
        if not line:
            continue
        key, value = _split_line(line)
        result[key] = value
    return result


def parse_records(payload: str) -> list[dict[str, str]]:
    """Decode a payload into a sequence of records.

    A new record begins whenever a key repeats within the current one, so
    ``"file: a\\nTitle: A\\nfile: b"`` gives two records.

    Raises:
        MalformedLineError: a non-empty line lacks ``": "``.
    """
    records: list[dict[str, str]] = []
    current: dict[str, str] = {}
    for line in payload.split("\n"):
        if not line:
            continue
        key, value = _split_line(line)
        if key in current:
            records.append(current)
            current = {}
        current[key] = value
    if current:
        records.append(current)
    return records


def parse_changed(payload: str) -> list[str]:
    """Extract subsystem names from an idle reply.

    One entry per ``changed:`` line, in order; other lines are ignored.
    """
    names = []
    for line in payload.split("\n"):
        key, sep, value = line.partition(SEPARATOR)
        if sep and key == CHANGED_KEY and value:
            names.append(value)
    return names
