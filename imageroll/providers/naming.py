"""Replacement naming for backends that key instances by name."""

from __future__ import annotations

import re
from datetime import UTC, datetime

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

_STAMP = re.compile(r"\d{14}")


def _is_stamp(segment: str) -> bool:
    if not _STAMP.fullmatch(segment):
        return False
    try:
        datetime.strptime(segment, TIMESTAMP_FORMAT)
    except ValueError:
        return False
    return True


def generate_instance_name(
    current: str,
    *,
    separator: str = "_",
    now: datetime | None = None,
    max_length: int | None = None,
) -> str:
    """Derive a fresh name for the replacement of ``current``.

    A trailing timestamp segment left by an earlier replacement is swapped
    for a new one, so ``web-01-20240101000000`` becomes ``web-01-<now>``.
    Any other name keeps its full text and gains the timestamp segment,
    so ``web-01`` becomes ``web-01-<now>`` and stays distinguishable from
    ``web-02``'s replacements.

    When ``max_length`` is set the stem is shortened so the result fits;
    the timestamp is never truncated.

    Example:
        >>> generate_instance_name("web", now=datetime(2024, 5, 1, 12, 0, 0))
        'web_20240501120000'
    """
    stamp = (now or datetime.now(UTC)).strftime(TIMESTAMP_FORMAT)
    stem, sep, last = current.rpartition(separator)
    if not (sep and _is_stamp(last)):
        stem = current

    if max_length is not None:
        room = max_length - len(separator) - len(stamp)
        if room < 1:
            raise ValueError(f"max_length {max_length} leaves no room for a name")
        stem = stem[:room].rstrip(separator)
    return f"{stem}{separator}{stamp}"
