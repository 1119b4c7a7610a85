from __future__ import annotations

import base64
import hashlib
import logging
import re
import shlex
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Callable, Sequence

from hashdrop.errors import (
    HashCountMismatchError,
    InvalidHashLengthError,
    RemoteCommandError,
    RemoteToolMissingError,
)
from hashdrop.remote import RemoteSession, quote_remote_path


logger = logging.getLogger(__name__)

MAX_HASH_LENGTH = 64
SHA256_MAX_LENGTH = 32
DEFAULT_BATCH_SIZE = 128
MIN_BATCH_SIZE = 16
CHUNK_SIZE = 1024 * 1024
EXIT_COMMAND_NOT_FOUND = 127
# sha*sum exit status when some of the given files could not be read
EXIT_UNREADABLE_FILE = 1

REMOTE_TOOLS = {"sha256": "sha256sum", "sha512": "sha512sum"}


def algorithm_for_length(length: int) -> str:
    """Return the digest algorithm used for tokens of `length` characters.

    Tokens of up to 32 characters are cut from a SHA-256 digest, longer ones
    from SHA-512. Remote hashing picks its tool with the same rule.
    """
    if length <= 0 or length > MAX_HASH_LENGTH:
        raise InvalidHashLengthError(length)
    if length <= SHA256_MAX_LENGTH:
        return "sha256"
    return "sha512"


def hash_token(digest: bytes, length: int) -> str:
    algorithm_for_length(length)
    return base64.urlsafe_b64encode(digest).decode("ascii")[:length]


def hash_stream(
    stream: BinaryIO,
    length: int,
    chunk_size: int = CHUNK_SIZE,
    *,
    on_chunk: Callable[[int], None] | None = None,
) -> str:
    digest = hashlib.new(algorithm_for_length(length))
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        digest.update(chunk)
        if on_chunk is not None:
            on_chunk(len(chunk))
    return hash_token(digest.digest(), length)


def hash_local(data: bytes, length: int) -> str:
    return hash_stream(BytesIO(data), length)


def hash_file(
    path: Path | str,
    length: int,
    *,
    on_chunk: Callable[[int], None] | None = None,
) -> str:
    path = Path(path)
    try:
        with path.open("rb") as fh:
            return hash_stream(fh, length, on_chunk=on_chunk)
    except OSError as exc:
        raise type(exc)(
            exc.errno, f"Could not read file to compute hash: {exc.strerror}", str(path)
        ) from exc


_SUM_ESCAPES = {"\\\\": "\\", "\\n": "\n", "\\r": "\r"}


def _parse_sum_line(line: str) -> tuple[str, str]:
    """Split a `sha*sum` output line into hex digest and file name."""
    # a leading backslash marks a file name with escaped characters
    escaped = line.startswith("\\")
    if escaped:
        line = line[1:]
    hex_digest, _, rest = line.partition(" ")
    # the character after the separator is the mode flag (' ' text, '*' binary)
    name = rest[1:]
    if escaped:
        name = re.sub(r"\\[\\nr]", lambda match: _SUM_ESCAPES[match.group()], name)
    return hex_digest, name


def _token_from_hex(hex_digest: str, length: int) -> str:
    return hash_token(bytes.fromhex(hex_digest), length)


def _remote_hash_batch(
    session: RemoteSession,
    paths: Sequence[str],
    length: int,
    *,
    missing_ok: bool,
) -> list[str | None]:
    tool = REMOTE_TOOLS[algorithm_for_length(length)]
    command = "cd {root} && {tool} -- {paths}".format(
        root=quote_remote_path(session.store_root),
        tool=tool,
        paths=" ".join(shlex.quote(path) for path in paths),
    )
    result = session.run_remote_command(command)
    if result.exit_code == EXIT_COMMAND_NOT_FOUND:
        raise RemoteToolMissingError(tool)
    partial = missing_ok and result.exit_code == EXIT_UNREADABLE_FILE
    if not result.ok and not partial:
        raise RemoteCommandError(
            f"Computing remote hash ({tool})", result.exit_code, result.stdout, result.stderr
        )

    lines = [line for line in result.stdout.splitlines() if line.strip()]
    if len(lines) > len(paths) or (result.ok and len(lines) != len(paths)):
        raise HashCountMismatchError(len(paths), len(lines))

    try:
        parsed = [_parse_sum_line(line) for line in lines]
        if result.ok:
            return [_token_from_hex(hex_digest, length) for hex_digest, _ in parsed]
        by_name = {name: _token_from_hex(hex_digest, length) for hex_digest, name in parsed}
    except ValueError as exc:
        raise RemoteCommandError(
            f"Parsing remote hash output ({tool})", result.exit_code, result.stdout, result.stderr
        ) from exc

    logger.debug("%s could not read %d file(s): %s", tool, len(paths) - len(lines), result.stderr.strip())
    return [by_name.get(path) for path in paths]


def hash_remote(
    session: RemoteSession,
    paths: Sequence[str],
    length: int,
    batch_size: int = DEFAULT_BATCH_SIZE,
    *,
    missing_ok: bool = False,
) -> list[str | None]:
    """Compute tokens for store-relative `paths` on the remote site.

    Paths are hashed in batches of `batch_size` per remote invocation and the
    tokens are returned in input order. With `missing_ok`, files the remote
    tool could not read come back as None instead of failing the batch.
    """
    algorithm_for_length(length)
    if not MIN_BATCH_SIZE <= batch_size <= DEFAULT_BATCH_SIZE:
        raise ValueError(
            f"batch_size must be between {MIN_BATCH_SIZE} and {DEFAULT_BATCH_SIZE}, got {batch_size}"
        )

    tokens: list[str | None] = []
    for start in range(0, len(paths), batch_size):
        batch = paths[start : start + batch_size]
        logger.debug("Hashing %d remote file(s) at length %d", len(batch), length)
        tokens.extend(_remote_hash_batch(session, batch, length, missing_ok=missing_ok))
    return tokens
