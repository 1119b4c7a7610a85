from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, Sequence

from hashdrop.catalog import Catalog
from hashdrop.duration import parse_duration
from hashdrop.errors import InvalidDurationError, InvalidIndexError, NoMatchingRemoteFileError
from hashdrop.filters import build_name_filter
from hashdrop.hashing import algorithm_for_length, hash_file
from hashdrop.models import Entry, RemoteStat
from hashdrop.stats import StatCache

if TYPE_CHECKING:
    from rich.console import Console

    from hashdrop.remote import RemoteSession


logger = logging.getLogger(__name__)


def _check_count(n: int) -> None:
    if n < 0:
        raise ValueError(f"Number of entries must not be negative, got {n}")


def _unique(indices: Iterable[int]) -> tuple[int, ...]:
    return tuple(dict.fromkeys(indices))


@dataclass(slots=True, frozen=True)
class Selection:
    """Ordered, duplicate-free subset of a catalog built by chained operations.

    Every operation returns a new `Selection`; the receiver is left untouched.
    Selections derived from one another share a `StatCache`, so stats are
    fetched at most once per entry for the whole pipeline.

    Attributes:
        catalog: Snapshot the indices point into.
        stats: Memoized remote stats, keyed by catalog index.
        indices: Selected catalog indices in current order.
    """

    catalog: Catalog
    stats: StatCache
    indices: tuple[int, ...] = ()

    @classmethod
    def empty(
        cls,
        catalog: Catalog,
        session: "RemoteSession",
        *,
        console: "Console | None" = None,
    ) -> "Selection":
        return cls(catalog=catalog, stats=StatCache(session=session, console=console))

    def _with(self, indices: Iterable[int]) -> "Selection":
        return replace(self, indices=tuple(indices))

    def _add(self, additions: Iterable[int]) -> "Selection":
        return self._with(_unique((*self.indices, *additions)))

    # -- selecting --------------------------------------------------------

    def by_indices(self, raw: Sequence[int] | None) -> "Selection":
        """Add entries by signed index; negative indices count from the end."""
        if not raw:
            return self
        num_files = len(self.catalog)
        for index in raw:
            if index < -num_files or index >= num_files:
                raise InvalidIndexError(index, num_files)
        return self._add(index + num_files if index < 0 else index for index in raw)

    def by_filter(self, regex: str | None) -> "Selection":
        """Add every entry whose file name matches `regex`."""
        name_filter = build_name_filter(regex)
        if name_filter is None:
            return self
        return self._add(entry.index for entry in self.catalog if name_filter.matches(entry.relative_path))

    def by_hash(
        self,
        local_files: Iterable[str | Path] | None,
        prefix_length: int,
        bail_on_missing: bool = True,
    ) -> "Selection":
        """Add the remote entries holding the same content as `local_files`.

        The remote folder names are truncated to `prefix_length` before
        comparison, so local and remote tokens are always compared at the
        same length.
        """
        files = list(local_files or ())
        if not files:
            return self
        algorithm_for_length(prefix_length)

        by_token: dict[str, list[int]] = {}
        for entry in self.catalog:
            by_token.setdefault(entry.hash_prefix[:prefix_length], []).append(entry.index)

        additions: list[int] = []
        for local_file in files:
            token = hash_file(local_file, prefix_length)
            matches = by_token.get(token)
            if matches:
                additions.extend(matches)
                continue
            if bail_on_missing:
                raise NoMatchingRemoteFileError(str(local_file))
            logger.warning("No file with same hash found on server: %s", local_file)
        return self._add(additions)

    def with_all(self, select_all: bool) -> "Selection":
        if not select_all:
            return self
        return self._add(range(len(self.catalog)))

    def with_all_if_none(self, select_all: bool = True) -> "Selection":
        if select_all and not self.indices:
            return self.with_all(True)
        return self

    # -- time window ------------------------------------------------------

    def _filter_by_time(
        self,
        duration: str | None,
        *,
        select_older: bool,
        now: Callable[[], float] | None,
    ) -> "Selection":
        if duration is None:
            return self
        seconds = parse_duration(duration)
        cutoff = (now or time.time)() - seconds
        if cutoff < 0:
            raise InvalidDurationError(duration, "reaches back before the epoch")

        stats = self._ensure_stats()
        if select_older:
            return self._with(index for index in self.indices if stats[index].mtime <= cutoff)
        return self._with(index for index in self.indices if stats[index].mtime >= cutoff)

    def select_newer(self, duration: str | None, *, now: Callable[[], float] | None = None) -> "Selection":
        """Keep entries modified within the last `duration`."""
        return self._filter_by_time(duration, select_older=False, now=now)

    def select_older(self, duration: str | None, *, now: Callable[[], float] | None = None) -> "Selection":
        """Keep entries modified at least `duration` ago."""
        return self._filter_by_time(duration, select_older=True, now=now)

    # -- ordering ---------------------------------------------------------

    def sort_by_size(self, do_sort: bool) -> "Selection":
        if not do_sort:
            return self
        stats = self._ensure_stats()
        return self._with(sorted(self.indices, key=lambda index: stats[index].size))

    def sort_by_time(self, do_sort: bool) -> "Selection":
        if not do_sort:
            return self
        stats = self._ensure_stats()
        return self._with(sorted(self.indices, key=lambda index: stats[index].mtime))

    def revert(self, do_revert: bool) -> "Selection":
        if not do_revert:
            return self
        return self._with(reversed(self.indices))

    def first(self, n: int | None) -> "Selection":
        if n is None:
            return self
        _check_count(n)
        return self._with(self.indices[:n])

    def last(self, n: int | None) -> "Selection":
        if n is None:
            return self
        _check_count(n)
        return self._with(self.indices[max(len(self.indices) - n, 0) :])

    # -- stats ------------------------------------------------------------

    def with_stats(self, fetch: bool) -> "Selection":
        if fetch:
            self._ensure_stats()
        return self

    def _ensure_stats(self) -> dict[int, RemoteStat]:
        self.stats.ensure([(index, self.catalog[index].relative_path) for index in self.indices])
        return {index: self.stats.get(index) for index in self.indices}

    def has_stats(self) -> bool:
        return all(index in self.stats for index in self.indices)

    # -- reading ----------------------------------------------------------

    def count(self) -> int:
        return len(self.indices)

    def __len__(self) -> int:
        return len(self.indices)

    def __iter__(self) -> Iterator[tuple[int, str, RemoteStat | None]]:
        for index in self.indices:
            yield index, self.catalog[index].relative_path, self.stats.get(index)

    def paths(self) -> list[str]:
        return [self.catalog[index].relative_path for index in self.indices]

    def entries(self) -> list[Entry]:
        return [replace(self.catalog[index], stat=self.stats.get(index)) for index in self.indices]


def select(
    catalog: Catalog,
    session: "RemoteSession",
    *,
    console: "Console | None" = None,
) -> Selection:
    """Start an empty selection pipeline over `catalog`."""
    return Selection.empty(catalog, session, console=console)
