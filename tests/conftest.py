"""
Shared fixtures for hashdrop tests.

`FakeSession` stands in for a remote site: it keeps the store in memory,
emulates `sha256sum`/`sha512sum` invocations issued through
`run_remote_command`, and counts stat calls so memoization can be checked.
"""

from __future__ import annotations

import hashlib
import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from hashdrop.catalog import build_catalog
from hashdrop.hashing import hash_local
from hashdrop.log import LOGGER_NAME
from hashdrop.models import CommandResult, RemoteStat
from hashdrop.selection import select


STORE_ROOT = "/srv/store"
NOW = 1_700_000_000


@dataclass
class RemoteFile:
    content: bytes
    mtime: int


@dataclass
class FakeSession:
    files: dict[str, RemoteFile] = field(default_factory=dict)
    store_root: str = STORE_ROOT
    bulk_stat: bool = True
    missing_tools: set[str] = field(default_factory=set)
    commands: list[str] = field(default_factory=list)
    stat_all_calls: int = 0
    stat_single_calls: int = 0
    removed: list[str] = field(default_factory=list)
    moved: list[tuple[str, str]] = field(default_factory=list)

    def add(self, name: str, content: bytes, mtime: int, prefix_length: int = 32) -> str:
        path = f"{hash_local(content, prefix_length)}/{name}"
        self.files[path] = RemoteFile(content=content, mtime=mtime)
        return path

    def run_remote_command(self, command: str) -> CommandResult:
        self.commands.append(command)
        tokens = shlex.split(command)
        assert tokens[:3] == ["cd", self.store_root, "&&"], command
        tool, separator, *paths = tokens[3:]
        assert separator == "--", command
        if tool in self.missing_tools:
            return CommandResult(127, "", f"bash: {tool}: command not found")

        algorithm = {"sha256sum": "sha256", "sha512sum": "sha512"}[tool]
        lines = []
        errors = []
        for path in paths:
            if path not in self.files:
                errors.append(f"{tool}: {path}: No such file or directory")
                continue
            digest = hashlib.new(algorithm, self.files[path].content).hexdigest()
            lines.append(f"{digest}  {path}")
        stdout = "".join(f"{line}\n" for line in lines)
        return CommandResult(1 if errors else 0, stdout, "\n".join(errors))

    def list_store_entries(self) -> list[str]:
        return sorted(self.files, key=lambda path: self.files[path].mtime)

    def has_bulk_stat(self) -> bool:
        return self.bulk_stat

    def _stat(self, path: str) -> RemoteStat:
        remote = self.files[path]
        return RemoteStat(size=len(remote.content), mtime=remote.mtime)

    def stat_all(self) -> dict[str, RemoteStat]:
        self.stat_all_calls += 1
        return {path: self._stat(path) for path in self.files}

    def stat_single(self, path: str) -> RemoteStat:
        self.stat_single_calls += 1
        return self._stat(path)

    def make_folder(self, folder: str) -> None:
        pass

    def remove_folder(self, folder: str) -> list[str]:
        self.removed.append(folder)
        for path in [path for path in self.files if path.startswith(f"{folder}/")]:
            del self.files[path]
        return [f"removed '{folder}'"]

    def move(self, source: str, target: str) -> None:
        self.moved.append((source, target))
        self.files[target] = self.files.pop(source)

    def adjust_group(self, folder: str, group: str) -> None:
        pass

    def upload_file(self, local_path: Path, relative_target: str, limit_kbits: int | None = None) -> None:
        self.files[relative_target] = RemoteFile(content=Path(local_path).read_bytes(), mtime=NOW)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo `setup_logging` from CLI runs so caplog sees package records."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def session() -> FakeSession:
    """Store holding a.txt, b.png and c.png, listed in that order (oldest first)."""
    fake = FakeSession()
    fake.add("a.txt", b"a" * 300, mtime=NOW - 3 * 86400)
    fake.add("b.png", b"b" * 500, mtime=NOW - 2 * 3600)
    fake.add("c.png", b"c" * 120, mtime=NOW - 60)
    return fake


@pytest.fixture
def catalog(session):
    return build_catalog(session)


@pytest.fixture
def selection(catalog, session):
    return select(catalog, session)
