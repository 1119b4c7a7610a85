from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Iterator, Sequence

from hashdrop.models import Entry

if TYPE_CHECKING:
    from hashdrop.remote import RemoteSession


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Catalog:
    """Snapshot of every object in the remote store, oldest first.

    Indices are positions in the listing, not content-derived, and are only
    meaningful for the lifetime of this snapshot.
    """

    entries: tuple[Entry, ...]

    @property
    def num_files(self) -> int:
        return len(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> Entry:
        return self.entries[index]

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)


def _is_store_path(path: str) -> bool:
    parts = PurePosixPath(path).parts
    return len(parts) == 2 and not path.startswith("/") and all(part not in {".", ".."} for part in parts)


def catalog_from_paths(paths: Sequence[str]) -> Catalog:
    entries: list[Entry] = []
    for path in paths:
        if not _is_store_path(path):
            logger.warning("Skipping unexpected entry in remote store: %s", path)
            continue
        entries.append(Entry(index=len(entries), relative_path=path))
    return Catalog(entries=tuple(entries))


def build_catalog(session: "RemoteSession") -> Catalog:
    paths = session.list_store_entries()
    catalog = catalog_from_paths(paths)
    logger.debug("Catalog holds %d remote file(s)", len(catalog))
    return catalog
