from __future__ import annotations

import pytest

from hashdrop.catalog import build_catalog
from hashdrop.errors import InvalidDurationError, InvalidIndexError, NoMatchingRemoteFileError
from hashdrop.selection import select

from conftest import NOW, FakeSession


def clock():
    return NOW


def test_empty_selection(selection):
    assert selection.count() == 0
    assert list(selection) == []


def test_by_indices_resolves_negative_indices(selection):
    assert selection.by_indices([0, -1]).indices == (0, 2)
    assert selection.by_indices([-3]).indices == (0,)


@pytest.mark.parametrize("index", [3, -4, 100])
def test_by_indices_rejects_out_of_range(selection, index):
    with pytest.raises(InvalidIndexError) as excinfo:
        selection.by_indices([0, index])
    assert excinfo.value.num_files == 3


def test_by_indices_on_empty_catalog():
    session = FakeSession()

    with pytest.raises(InvalidIndexError):
        select(build_catalog(session), session).by_indices([0])


def test_selections_are_duplicate_free(selection):
    picked = selection.by_indices([1, 1, -2]).by_filter(r"\.png$")
    assert picked.indices == (1, 2)


def test_operations_leave_receiver_untouched(selection):
    base = selection.by_indices([2, 0])
    base.revert(True)
    base.by_indices([1])
    base.sort_by_size(True)
    assert base.indices == (2, 0)


def test_by_filter_matches_file_name_only(selection, session):
    token = session.list_store_entries()[0].split("/")[0]

    assert selection.by_filter("png").indices == (1, 2)
    assert selection.by_filter(r"^a\.").indices == (0,)
    assert selection.by_filter(token[:6]).indices == ()
    assert selection.by_filter(None) is selection


def test_by_filter_rejects_bad_regex(selection):
    with pytest.raises(ValueError, match="Invalid filter regex"):
        selection.by_filter("(")


def test_by_hash_finds_matching_entry(selection, tmp_path):
    local = tmp_path / "copy-of-b.png"
    local.write_bytes(b"b" * 500)

    assert selection.by_hash([local], 32).indices == (1,)


def test_by_hash_compares_at_requested_length(selection, tmp_path):
    local = tmp_path / "c.png"
    local.write_bytes(b"c" * 120)

    # folders are 32 characters, a shorter length compares their prefix
    assert selection.by_hash([local], 12).indices == (2,)


def test_by_hash_selects_every_name_in_folder(tmp_path):
    session = FakeSession()
    session.add("one.txt", b"same", mtime=1)
    session.add("two.txt", b"same", mtime=2)
    session.add("other.txt", b"other", mtime=3)

    local = tmp_path / "same.txt"
    local.write_bytes(b"same")

    assert select(build_catalog(session), session).by_hash([local], 32).indices == (0, 1)


def test_by_hash_missing_file_bails(selection, tmp_path):
    local = tmp_path / "unknown.bin"
    local.write_bytes(b"not uploaded")

    with pytest.raises(NoMatchingRemoteFileError, match="unknown.bin"):
        selection.by_hash([local], 32)


def test_by_hash_missing_file_warns(selection, tmp_path, caplog):
    known = tmp_path / "a.txt"
    known.write_bytes(b"a" * 300)
    unknown = tmp_path / "unknown.bin"
    unknown.write_bytes(b"not uploaded")

    with caplog.at_level("WARNING", logger="hashdrop"):
        picked = selection.by_hash([unknown, known], 32, bail_on_missing=False)

    assert picked.indices == (0,)
    assert "unknown.bin" in caplog.text


def test_with_all_and_with_all_if_none(selection):
    assert selection.with_all(True).indices == (0, 1, 2)
    assert selection.with_all(False).indices == ()
    assert selection.with_all_if_none().indices == (0, 1, 2)
    assert selection.by_indices([1]).with_all_if_none().indices == (1,)
    assert selection.with_all_if_none(False).indices == ()


def test_with_all_keeps_existing_order_first(selection):
    assert selection.by_indices([2]).with_all(True).indices == (2, 0, 1)


def test_select_newer(selection):
    everything = selection.with_all(True)

    assert everything.select_newer("5min", now=clock).indices == (2,)
    assert everything.select_newer("1day", now=clock).indices == (1, 2)
    assert everything.select_newer(None, now=clock) is everything


def test_select_older(selection):
    everything = selection.with_all(True)

    assert everything.select_older("1h", now=clock).indices == (0, 1)
    assert everything.select_older("2days", now=clock).indices == (0,)


def test_time_window_before_epoch_is_rejected(selection):
    with pytest.raises(InvalidDurationError):
        selection.with_all(True).select_newer("100years", now=lambda: 1000)


def test_sorting(selection):
    everything = selection.with_all(True)

    assert everything.sort_by_size(True).indices == (2, 0, 1)
    assert everything.sort_by_time(True).indices == (0, 1, 2)
    assert everything.sort_by_size(False) is everything


def test_sort_is_stable_for_equal_keys():
    session = FakeSession()
    for name in ("x", "y", "z"):
        session.add(name, name.encode() * 10, mtime=5)

    picked = select(build_catalog(session), session).by_indices([2, 0, 1]).sort_by_time(True)
    assert picked.indices == (2, 0, 1)


def test_revert_first_last(selection):
    everything = selection.with_all(True)

    assert everything.revert(True).indices == (2, 1, 0)
    assert everything.first(2).indices == (0, 1)
    assert everything.last(2).indices == (1, 2)
    assert everything.first(10).indices == (0, 1, 2)
    assert everything.last(10).indices == (0, 1, 2)
    assert everything.last(0).indices == ()


def test_smallest_png(selection):
    picked = selection.by_filter("png").sort_by_size(True).first(1)
    assert picked.paths()[0].endswith("/c.png")
    assert picked.indices == (2,)


def test_sort_revert_last_gives_smallest(selection):
    picked = selection.with_all(True).sort_by_size(True).revert(True).last(1)
    assert picked.indices == (2,)


def test_stats_are_fetched_once_per_pipeline(selection, session):
    everything = selection.with_all(True)
    everything.sort_by_size(True).select_newer("1day", now=clock).sort_by_time(True).with_stats(True)

    assert session.stat_all_calls == 1
    assert everything.has_stats()


def test_stats_fetched_for_entries_added_later(selection, session):
    first = selection.by_indices([0]).sort_by_size(True)
    grown = first.by_indices([2]).sort_by_size(True)

    assert session.stat_all_calls == 2
    assert selection.stats.fetch_count == 2
    assert [stat.size for _, _, stat in grown] == [120, 300]


def test_iteration_yields_stats_when_fetched(selection):
    rows = list(selection.by_indices([1]).with_stats(True))
    index, path, stat = rows[0]

    assert index == 1
    assert path.endswith("/b.png")
    assert stat.size == 500

    unfetched = list(select(selection.catalog, selection.stats.session).by_indices([1]))
    assert unfetched[0][2] is None


def test_entries_carry_stats(selection):
    entries = selection.by_indices([0]).with_stats(True).entries()
    assert entries[0].filename == "a.txt"
    assert entries[0].stat.mtime == NOW - 3 * 86400


def test_time_window_with_huge_duration_is_rejected(selection):
    with pytest.raises(InvalidDurationError):
        selection.with_all(True).select_newer("1" + "0" * 400 + "s", now=clock)


@pytest.mark.parametrize("method", ["first", "last"])
def test_negative_counts_are_rejected(selection, method):
    with pytest.raises(ValueError, match="must not be negative"):
        getattr(selection.with_all(True), method)(-1)
