"""
Read-only query surface over the registry.

[RegistryReader][derepute.services.reader.RegistryReader] is all the
presentation layer ever touches: counts, lookups, index-ordered pages,
and a progressive client-side search built on top of pages. It never
mutates the store.

Pagination errors are distinct: an offset outside the populated range
raises [OffsetOutOfBoundsError][derepute.core.exceptions.OffsetOutOfBoundsError],
while an unknown fingerprint raises
[NotFoundError][derepute.core.exceptions.NotFoundError].
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, NamedTuple

from derepute.core.exceptions import OffsetOutOfBoundsError, StateError


if TYPE_CHECKING:
    from derepute.core.registry import RegistryStore
    from derepute.models.relay_record import RelayRecord


DEFAULT_PAGE_SIZE = 50


class SearchProgress(NamedTuple):
    """Snapshot of a search sweep, yielded after every page.

    Attributes:
        matches: Records matched so far, in index order.
        scanned: Records examined so far.
        total: Registry size when the latest page was read.
        complete: Whether the sweep has reached the end of the registry.
    """

    matches: tuple[RelayRecord, ...]
    scanned: int
    total: int
    complete: bool


def matches_query(record: RelayRecord, query: str) -> bool:
    """Case-insensitive substring match on fingerprint, nickname and country."""
    needle = query.strip().lower()
    return (
        needle in record.fingerprint.lower()
        or needle in record.nickname.lower()
        or needle in record.country.lower()
    )


class RegistryReader:
    """Pagination and search façade over a [RegistryStore][derepute.core.registry.RegistryStore].

    Example:
        reader = RegistryReader(store)
        first = reader.page(0, 25)
        for progress in reader.search("de"):
            render(progress.matches, done=progress.complete)
    """

    def __init__(self, store: RegistryStore) -> None:
        self._store = store

    def count(self) -> int:
        return self._store.count()

    def exists(self, fingerprint: str) -> bool:
        return self._store.exists(fingerprint)

    def get(self, fingerprint: str) -> RelayRecord:
        """Raises [NotFoundError][derepute.core.exceptions.NotFoundError] if absent."""
        return self._store.get(fingerprint)

    def get_by_index(self, index: int) -> str:
        return self._store.get_by_index(index)

    def page(self, offset: int, limit: int) -> list[RelayRecord]:
        """Return up to *limit* records starting at *offset*, in index order.

        A range running past the end is truncated to the available tail.

        Raises:
            OffsetOutOfBoundsError: If ``offset < 0`` or ``offset >= count()``,
                which includes every offset of an empty registry.
            StateError: If *limit* is less than 1.
        """
        if limit < 1:
            raise StateError(f"limit must be >= 1, got {limit}")
        total = self._store.count()
        if not 0 <= offset < total:
            raise OffsetOutOfBoundsError(f"offset {offset} out of bounds for {total} records")
        return self._store.records_between(offset, min(offset + limit, total))

    def iter_pages(self, page_size: int = DEFAULT_PAGE_SIZE) -> Iterator[list[RelayRecord]]:
        """Yield consecutive pages until the end of the registry.

        The end is re-read before every page, so records appended during
        the sweep are picked up.
        """
        offset = 0
        while offset < self._store.count():
            page = self.page(offset, page_size)
            yield page
            offset += len(page)

    def search(
        self, query: str, page_size: int = DEFAULT_PAGE_SIZE
    ) -> Iterator[SearchProgress]:
        """Sweep the registry page by page, yielding partial results.

        Callers can render each [SearchProgress][derepute.services.reader.SearchProgress]
        as it arrives; the last one has ``complete`` set.
        """
        matches: list[RelayRecord] = []
        scanned = 0
        yielded = False
        for page in self.iter_pages(page_size):
            matches.extend(r for r in page if matches_query(r, query))
            scanned += len(page)
            total = self._store.count()
            yielded = True
            yield SearchProgress(tuple(matches), scanned, total, scanned >= total)
        if not yielded:
            yield SearchProgress((), 0, 0, True)

    def search_all(self, query: str, page_size: int = DEFAULT_PAGE_SIZE) -> list[RelayRecord]:
        """Return every record matching *query* after a full sweep."""
        last = SearchProgress((), 0, 0, True)
        for last in self.search(query, page_size):
            pass
        return list(last.matches)
