from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath


@dataclass(slots=True, frozen=True)
class RemoteStat:
    size: int
    mtime: int


@dataclass(slots=True, frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(slots=True, frozen=True)
class Entry:
    index: int
    relative_path: str
    stat: RemoteStat | None = None

    @property
    def hash_prefix(self) -> str:
        return PurePosixPath(self.relative_path).parts[0]

    @property
    def filename(self) -> str:
        return PurePosixPath(self.relative_path).name


@dataclass(slots=True, frozen=True)
class Verified:
    token: str


@dataclass(slots=True, frozen=True)
class Mismatch:
    expected: str
    actual: str

    def describe(self) -> str:
        return f"Expected '{self.expected}', but found '{self.actual}'"


@dataclass(slots=True, frozen=True)
class Unhashable:
    """Entry whose content could not be hashed, so it cannot be confirmed."""

    expected: str
    reason: str

    def describe(self) -> str:
        return f"Expected '{self.expected}', but could not hash: {self.reason}"
