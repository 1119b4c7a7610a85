from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Union

from hashdrop.errors import InvalidHashLengthError, VerificationMismatchError
from hashdrop.hashing import DEFAULT_BATCH_SIZE, algorithm_for_length, hash_remote
from hashdrop.models import Entry, Mismatch, Unhashable, Verified

if TYPE_CHECKING:
    from hashdrop.remote import RemoteSession
    from hashdrop.selection import Selection


logger = logging.getLogger(__name__)

Outcome = Union[Verified, Mismatch, Unhashable]

UNREADABLE_REASON = "remote file missing or unreadable"


def verify_entries(
    session: "RemoteSession",
    entries: list[Entry],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[tuple[Entry, Outcome]]:
    """Recompute the remote hash of every entry and compare it to its folder name.

    The folder name is the token computed at upload time, and its length
    decides which algorithm recomputes it, so entries are grouped by prefix
    length and each group is hashed separately. All entries are checked; the
    outcomes come back in the order of `entries`. Entries that cannot be
    hashed (unreadable file, folder name too long for any algorithm) are
    reported as `Unhashable` without stopping the sweep.
    """
    by_length: dict[int, list[int]] = {}
    for position, entry in enumerate(entries):
        by_length.setdefault(len(entry.hash_prefix), []).append(position)

    actual: dict[int, str | None] = {}
    unhashable: dict[int, str] = {}
    for length, positions in by_length.items():
        try:
            algorithm_for_length(length)
        except InvalidHashLengthError as exc:
            unhashable.update((position, str(exc)) for position in positions)
            continue
        tokens = hash_remote(
            session,
            [entries[position].relative_path for position in positions],
            length,
            batch_size=batch_size,
            missing_ok=True,
        )
        actual.update(zip(positions, tokens))

    outcomes: list[tuple[Entry, Outcome]] = []
    for position, entry in enumerate(entries):
        expected = entry.hash_prefix
        token = actual.get(position)
        if position in unhashable:
            outcomes.append((entry, Unhashable(expected=expected, reason=unhashable[position])))
        elif token is None:
            outcomes.append((entry, Unhashable(expected=expected, reason=UNREADABLE_REASON)))
        elif token == expected:
            outcomes.append((entry, Verified(token=expected)))
        else:
            logger.debug("Mismatch for %s: expected %s, found %s", entry.relative_path, expected, token)
            outcomes.append((entry, Mismatch(expected=expected, actual=token)))
    return outcomes


def verify(
    session: "RemoteSession",
    selection: "Selection",
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[tuple[Entry, Outcome]]:
    return verify_entries(session, selection.entries(), batch_size=batch_size)


def raise_for_mismatches(outcomes: list[tuple[Entry, Outcome]]) -> None:
    failures = [(entry, outcome) for entry, outcome in outcomes if not isinstance(outcome, Verified)]
    if failures:
        raise VerificationMismatchError(failures, total=len(outcomes))


def verify_upload(session: "RemoteSession", relative_path: str, expected: str) -> Outcome:
    """Check a single freshly uploaded file against the token it was stored under."""
    entry = Entry(index=-1, relative_path=relative_path)
    if entry.hash_prefix != expected:
        raise ValueError(f"{relative_path} is not stored under token {expected}")
    [(_, outcome)] = verify_entries(session, [entry])
    return outcome
