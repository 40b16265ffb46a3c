"""Name filters used to select instances by identifier."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable

from imageroll.core.exceptions import ConfigurationError

type FilterKind = Literal["regex", "exact", "prefix"]


@runtime_checkable
class NameFilter(Protocol):
    @property
    def pattern(self) -> str: ...

    def matches(self, name: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class RegexFilter:
    """Unanchored regular expression: matches anywhere in the name."""

    pattern: str
    _compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            compiled = re.compile(self.pattern)
        except re.error as e:
            raise ConfigurationError(
                f"invalid identifier pattern: {e}", identifier=self.pattern,
            ) from e
        object.__setattr__(self, "_compiled", compiled)

    def matches(self, name: str) -> bool:
        return self._compiled.search(name) is not None


@dataclass(frozen=True, slots=True)
class ExactFilter:
    pattern: str

    def matches(self, name: str) -> bool:
        return name == self.pattern


@dataclass(frozen=True, slots=True)
class PrefixFilter:
    pattern: str

    def matches(self, name: str) -> bool:
        return name.startswith(self.pattern)


_FILTERS: dict[FilterKind, Callable[[str], NameFilter]] = {
    "regex": RegexFilter,
    "exact": ExactFilter,
    "prefix": PrefixFilter,
}


def name_filter(identifier: str, kind: FilterKind = "regex") -> NameFilter:
    """Build the filter strategy named by ``kind`` for an identifier."""
    try:
        factory = _FILTERS[kind]
    except KeyError:
        raise ConfigurationError(
            f"unknown filter kind '{kind}'. Valid: {', '.join(_FILTERS)}",
        ) from None
    return factory(identifier)


FILTER_KINDS: tuple[FilterKind, ...] = tuple(_FILTERS)
