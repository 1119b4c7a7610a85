from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath


@dataclass(slots=True, frozen=True)
class NameFilter:
    pattern: re.Pattern[str]

    def matches(self, path: str) -> bool:
        # only the file name takes part, never the hash folder
        return self.pattern.search(PurePosixPath(path).name) is not None


def build_name_filter(regex: str | None) -> NameFilter | None:
    if regex is None:
        return None
    try:
        return NameFilter(pattern=re.compile(regex))
    except re.error as exc:
        raise ValueError(f"Invalid filter regex '{regex}': {exc}") from exc
