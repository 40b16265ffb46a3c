"""Identifier resolution against a compute backend.

The resolver only collects matches; deciding whether zero or several
matches are acceptable is left to the caller (``MatchResult.single``).
"""

from __future__ import annotations

from loguru import logger

from imageroll.api.model import InstanceInfo, MatchResult
from imageroll.api.predicate import NameFilter
from imageroll.core.exceptions import BackendQueryError, ImagerollError
from imageroll.providers.provider import ComputeBackend

log = logger.bind(component="resolver")


class InstanceResolver:
    def __init__(self, backend: ComputeBackend) -> None:
        self._backend = backend

    async def resolve(self, name_filter: NameFilter) -> MatchResult:
        """Return every instance whose name passes ``name_filter``.

        Pages through the full listing. A failed page discards everything
        gathered so far, since a truncated listing could make an ambiguous
        identifier look unique.
        """
        matches: list[InstanceInfo] = []
        token: str | None = None
        seen: set[str] = set()
        pages = 0

        while True:
            try:
                page = await self._backend.list_instances(token)
            except ImagerollError as e:
                e.with_context("list", name_filter.pattern)
                raise
            except Exception as e:
                raise BackendQueryError(
                    f"listing page {pages + 1} failed: {e}",
                    step="list",
                    identifier=name_filter.pattern,
                ) from e

            pages += 1
            matches.extend(i for i in page.instances if name_filter.matches(i.name))

            if not page.next_token:
                break
            if page.next_token in seen:
                raise BackendQueryError(
                    f"listing page {pages} repeated continuation token {page.next_token!r}",
                    step="list",
                    identifier=name_filter.pattern,
                )
            seen.add(page.next_token)
            token = page.next_token

        log.debug(
            "Resolved {pattern!r}: {n} match(es) across {pages} page(s)",
            pattern=name_filter.pattern, n=len(matches), pages=pages,
        )
        return MatchResult(pattern=name_filter.pattern, instances=tuple(matches))
