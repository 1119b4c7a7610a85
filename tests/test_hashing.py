from __future__ import annotations

import base64
import hashlib

import pytest

from hashdrop.errors import (
    HashCountMismatchError,
    InvalidHashLengthError,
    RemoteCommandError,
    RemoteToolMissingError,
)
from hashdrop.hashing import algorithm_for_length, hash_file, hash_local, hash_remote
from hashdrop.models import CommandResult

from conftest import FakeSession


CONTENT = b"hello hashdrop\n"


def _full_token(algorithm: str, data: bytes) -> str:
    return base64.urlsafe_b64encode(hashlib.new(algorithm, data).digest()).decode("ascii")


@pytest.mark.parametrize(
    ("length", "algorithm"),
    [(1, "sha256"), (8, "sha256"), (32, "sha256"), (33, "sha512"), (40, "sha512"), (64, "sha512")],
)
def test_algorithm_threshold(length, algorithm):
    assert algorithm_for_length(length) == algorithm


@pytest.mark.parametrize("length", [0, -1, 65, 128])
def test_invalid_lengths_are_rejected(length):
    with pytest.raises(InvalidHashLengthError):
        hash_local(CONTENT, length)


def test_tokens_are_truncations_of_their_own_digest():
    short = hash_local(CONTENT, 8)
    long = hash_local(CONTENT, 40)

    assert short == _full_token("sha256", CONTENT)[:8]
    assert long == _full_token("sha512", CONTENT)[:40]
    assert not long.startswith(short)


def test_hash_local_is_deterministic_and_content_sensitive():
    assert hash_local(CONTENT, 32) == hash_local(CONTENT, 32)
    assert hash_local(CONTENT, 32) != hash_local(CONTENT + b"!", 32)
    assert len(hash_local(CONTENT, 32)) == 32


def test_tokens_are_url_safe():
    # 0xfb/0xff bytes would encode to '+' and '/' in the standard alphabet
    for data in (b"\xfb\xff" * 50, bytes(range(256))):
        token = hash_local(data, 64)
        assert "+" not in token and "/" not in token


def test_hash_file_matches_hash_local(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(CONTENT * 1000)
    seen = []

    token = hash_file(path, 32, on_chunk=seen.append)

    assert token == hash_local(CONTENT * 1000, 32)
    assert sum(seen) == len(CONTENT) * 1000


def test_hash_file_keeps_error_type_and_names_file(tmp_path):
    with pytest.raises(FileNotFoundError, match="missing.bin"):
        hash_file(tmp_path / "missing.bin", 32)


def test_hash_remote_agrees_with_local_hashing():
    session = FakeSession()
    paths = [session.add(f"f{i}.txt", f"content {i}".encode(), mtime=i) for i in range(5)]

    assert hash_remote(session, paths, 32) == [path.split("/")[0] for path in paths]
    assert hash_remote(session, paths, 40) == [
        hash_local(f"content {i}".encode(), 40) for i in range(5)
    ]


def test_hash_remote_uses_tool_matching_length():
    session = FakeSession()
    path = session.add("x", b"x", mtime=0)

    hash_remote(session, [path], 32)
    hash_remote(session, [path], 33)

    assert "sha256sum" in session.commands[0]
    assert "sha512sum" in session.commands[1]


def test_hash_remote_batches_and_keeps_order():
    session = FakeSession()
    paths = [session.add(f"f{i}", f"{i}".encode(), mtime=i) for i in range(40)]

    tokens = hash_remote(session, list(reversed(paths)), 32, batch_size=16)

    assert len(session.commands) == 3
    assert tokens == [path.split("/")[0] for path in reversed(paths)]


def test_hash_remote_rejects_out_of_range_batch_size():
    with pytest.raises(ValueError):
        hash_remote(FakeSession(), ["a/b"], 32, batch_size=4)


def test_hash_remote_reports_missing_tool():
    session = FakeSession(missing_tools={"sha512sum"})
    path = session.add("x", b"x", mtime=0)

    with pytest.raises(RemoteToolMissingError, match="sha512sum"):
        hash_remote(session, [path], 50)


class _ScriptedSession:
    store_root = "/srv/store"

    def __init__(self, result: CommandResult) -> None:
        self.result = result

    def run_remote_command(self, command: str) -> CommandResult:
        return self.result


def test_hash_remote_detects_count_mismatch():
    session = _ScriptedSession(CommandResult(0, f"{'ab' * 32}  one/a\n", ""))

    with pytest.raises(HashCountMismatchError) as excinfo:
        hash_remote(session, ["one/a", "two/b"], 32)

    assert excinfo.value.requested == 2
    assert excinfo.value.received == 1


def test_hash_remote_reports_other_failures():
    session = _ScriptedSession(CommandResult(2, "", "permission denied"))

    with pytest.raises(RemoteCommandError, match="permission denied"):
        hash_remote(session, ["one/a"], 32)


def test_hash_remote_handles_escaped_output_lines():
    digest = hashlib.sha256(b"x").hexdigest()
    session = _ScriptedSession(CommandResult(0, f"\\{digest}  odd\\\\name/a\n", ""))

    assert hash_remote(session, ["odd\\name/a"], 32) == [hash_local(b"x", 32)]


def test_unreadable_remote_file_fails_strict_hashing():
    session = FakeSession()
    path = session.add("x", b"x", mtime=0)

    with pytest.raises(RemoteCommandError, match="No such file"):
        hash_remote(session, [path, "gone/file.txt"], 32)


def test_missing_ok_keeps_hashes_of_readable_files():
    session = FakeSession()
    first = session.add("one", b"1", mtime=0)
    last = session.add("two", b"2", mtime=1)

    tokens = hash_remote(session, [first, "gone/file.txt", last], 32, missing_ok=True)

    assert tokens == [first.split("/")[0], None, last.split("/")[0]]


def test_missing_ok_matches_escaped_names():
    digest = hashlib.sha256(b"x").hexdigest()
    session = _ScriptedSession(
        CommandResult(1, f"\\{digest}  odd\\\\name/a\n", "sha256sum: gone/b: No such file or directory")
    )

    tokens = hash_remote(session, ["gone/b", "odd\\name/a"], 32, missing_ok=True)

    assert tokens == [None, hash_local(b"x", 32)]


def test_missing_ok_still_reports_other_failures():
    session = _ScriptedSession(CommandResult(2, "", "sha256sum: invalid option"))

    with pytest.raises(RemoteCommandError):
        hash_remote(session, ["one/a"], 32, missing_ok=True)


def test_missing_ok_still_detects_surplus_output():
    line = f"{'ab' * 32}  one/a\n"
    session = _ScriptedSession(CommandResult(1, line * 2, ""))

    with pytest.raises(HashCountMismatchError):
        hash_remote(session, ["one/a"], 32, missing_ok=True)
