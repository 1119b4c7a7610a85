from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, Sequence

from hashdrop.errors import StatCountMismatchError
from hashdrop.models import RemoteStat
from hashdrop.progress_ui import track_remote

if TYPE_CHECKING:
    from rich.console import Console

    from hashdrop.remote import RemoteSession


logger = logging.getLogger(__name__)


class StatStrategy(Protocol):
    def fetch(self, session: "RemoteSession", paths: Sequence[str]) -> list[RemoteStat]: ...


@dataclass(slots=True)
class BulkStatStrategy:
    """One scan of the whole store, narrowed down to the requested paths."""

    def fetch(self, session: "RemoteSession", paths: Sequence[str]) -> list[RemoteStat]:
        all_stats = session.stat_all()
        missing = [path for path in paths if path not in all_stats]
        if missing:
            raise StatCountMismatchError(len(paths), len(paths) - len(missing), missing)
        return [all_stats[path] for path in paths]


@dataclass(slots=True)
class PerEntryStatStrategy:
    """One remote stat call per path, with a progress bar."""

    console: "Console | None" = None

    def fetch(self, session: "RemoteSession", paths: Sequence[str]) -> list[RemoteStat]:
        if self.console is None:
            return [session.stat_single(path) for path in paths]
        return [
            session.stat_single(path)
            for path in track_remote(
                paths, total=len(paths), description="Fetching stats", console=self.console
            )
        ]


def choose_strategy(session: "RemoteSession", console: "Console | None" = None) -> StatStrategy:
    if session.has_bulk_stat():
        return BulkStatStrategy()
    logger.info("Remote site lacks find/stat, falling back to per-file stat.")
    return PerEntryStatStrategy(console=console)


def fetch_stats(
    session: "RemoteSession",
    paths: Sequence[str],
    *,
    console: "Console | None" = None,
) -> list[RemoteStat]:
    """Return stats for `paths` in the given order."""
    if not paths:
        return []
    stats = choose_strategy(session, console).fetch(session, paths)
    if len(stats) != len(paths):
        raise StatCountMismatchError(len(paths), len(stats))
    return stats


@dataclass(slots=True)
class StatCache:
    """Stats memoized by catalog index for the lifetime of one selection pipeline.

    Fetched stats are never refreshed. Indices added to a selection after a
    fetch are fetched on the next demand.
    """

    session: "RemoteSession"
    console: "Console | None" = None
    _stats: dict[int, RemoteStat] = field(default_factory=dict)
    fetch_count: int = 0

    def __contains__(self, index: int) -> bool:
        return index in self._stats

    def __len__(self) -> int:
        return len(self._stats)

    def get(self, index: int) -> RemoteStat | None:
        return self._stats.get(index)

    def ensure(self, indexed_paths: Sequence[tuple[int, str]]) -> None:
        missing = [(index, path) for index, path in indexed_paths if index not in self._stats]
        if not missing:
            return
        logger.debug("Fetching stats for %d remote file(s)", len(missing))
        stats = fetch_stats(self.session, [path for _, path in missing], console=self.console)
        self.fetch_count += 1
        for (index, _), stat in zip(missing, stats):
            self._stats[index] = stat
