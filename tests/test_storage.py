"""Tests for storage: load_json/save_json, file_lock and the key-value stores."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path

import pytest

from ratetrack.storage import (
    JsonFileStore,
    LockTimeout,
    MemoryStore,
    file_lock,
    load_json,
    read_json,
    save_json,
)


@pytest.fixture()
def tmp_json(tmp_path: Path) -> Path:
    return tmp_path / "ratings.json"


# ---- save_json ----


def test_save_writes_valid_json(tmp_json):
    save_json(tmp_json, {"entries": {"2024-01-01": {"interest": 3}}})
    data = json.loads(tmp_json.read_text())
    assert data == {"entries": {"2024-01-01": {"interest": 3}}}


def test_save_creates_parent_dirs(tmp_path):
    deep = tmp_path / "a" / "b" / "c" / "ratings.json"
    save_json(deep, {"x": 1})
    assert deep.exists()


def test_save_is_atomic_no_tmp_left(tmp_json):
    save_json(tmp_json, {"x": 1})
    tmp = tmp_json.with_name(tmp_json.name + ".tmp")
    assert not tmp.exists()


def test_save_sets_permissions(tmp_json):
    save_json(tmp_json, {})
    mode = oct(os.stat(tmp_json).st_mode & 0o777)
    assert mode == "0o600"


# ---- load_json ----


def test_load_missing_returns_empty_dict_and_creates_file(tmp_json):
    assert load_json(tmp_json) == {}
    assert tmp_json.exists()


def test_load_empty_file_returns_empty_dict(tmp_json):
    tmp_json.write_text("", encoding="utf-8")
    assert load_json(tmp_json) == {}


def test_load_corrupt_returns_empty_and_backs_up(tmp_json):
    tmp_json.write_text("not valid json {{{{", encoding="utf-8")
    assert load_json(tmp_json) == {}
    backups = list(tmp_json.parent.glob("*.corrupt-*.json"))
    assert len(backups) == 1
    assert backups[0].read_text(encoding="utf-8") == "not valid json {{{{"


def test_load_non_dict_json_returns_empty(tmp_json):
    tmp_json.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    assert load_json(tmp_json) == {}


# ---- file_lock ----


def test_lock_file_removed_after_use(tmp_json):
    lock = tmp_json.with_name(tmp_json.name + ".lock")
    with file_lock(tmp_json):
        assert lock.exists()
    assert not lock.exists()


def test_lock_released_on_error(tmp_json):
    lock = tmp_json.with_name(tmp_json.name + ".lock")
    with pytest.raises(RuntimeError):
        with file_lock(tmp_json):
            raise RuntimeError("boom")
    assert not lock.exists()


def test_lock_held_elsewhere_times_out(tmp_json):
    lock = tmp_json.with_name(tmp_json.name + ".lock")
    lock.write_text("12345", encoding="ascii")
    with pytest.raises(LockTimeout):
        with file_lock(tmp_json, timeout=0.1):
            pass
    assert lock.exists()


def test_stale_lock_is_broken(tmp_json):
    lock = tmp_json.with_name(tmp_json.name + ".lock")
    lock.write_text("12345", encoding="ascii")
    old = time.time() - 3600
    os.utime(lock, (old, old))
    with file_lock(tmp_json, timeout=0.1):
        pass
    assert not lock.exists()


# ---- JsonFileStore ----


def test_file_store_update_persists(tmp_json):
    store = JsonFileStore(tmp_json)
    store.update("weekly", lambda old: {**(old or {}), "2024-01-01_2024-01-07": "t1"})
    assert JsonFileStore(tmp_json).get("weekly") == {"2024-01-01_2024-01-07": "t1"}


def test_file_store_update_keeps_other_keys(tmp_json):
    save_json(tmp_json, {"monthly": {"2024-01": "t0"}})
    store = JsonFileStore(tmp_json)
    store.set("weekly", {"w": "t1"})
    assert store.entries() == {"monthly": {"2024-01": "t0"}, "weekly": {"w": "t1"}}


def test_file_store_rereads_disk_before_update(tmp_json):
    a = JsonFileStore(tmp_json)
    b = JsonFileStore(tmp_json)
    a.set("weekly", {"x": "1"})
    b.update("weekly", lambda old: {**old, "y": "2"})
    assert a.get("weekly") == {"x": "1", "y": "2"}


def test_file_store_get_default_on_corrupt(tmp_json):
    tmp_json.write_text("{oops", encoding="utf-8")
    assert JsonFileStore(tmp_json).get("entries", {}) == {}


# ---- MemoryStore ----


def test_memory_store_copies_input():
    src = {"entries": {"2024-01-01": {"a": 1}}}
    store = MemoryStore(src)
    src["entries"]["2024-01-01"]["a"] = 5
    assert store.get("entries") == {"2024-01-01": {"a": 1}}


def test_memory_store_update_returns_new_value():
    store = MemoryStore()
    assert store.update("n", lambda old: (old or 0) + 1) == 1
    assert store.update("n", lambda old: (old or 0) + 1) == 2
    assert store.entries() == {"n": 2}


# ---- read path never writes ----


def test_read_json_missing_does_not_create(tmp_json):
    assert read_json(tmp_json) == {}
    assert not tmp_json.exists()


def test_read_json_corrupt_leaves_file_alone(tmp_json):
    tmp_json.write_text("{oops", encoding="utf-8")
    assert read_json(tmp_json) == {}
    assert tmp_json.read_text(encoding="utf-8") == "{oops"
    assert list(tmp_json.parent.glob("*.corrupt-*")) == []


def test_read_json_non_dict(tmp_json):
    tmp_json.write_text("[1, 2]", encoding="utf-8")
    assert read_json(tmp_json) == {}


def test_file_store_reads_do_not_create_files(tmp_json):
    store = JsonFileStore(tmp_json)
    assert store.get("weekly", {}) == {}
    assert store.entries() == {}
    assert list(tmp_json.parent.iterdir()) == []


def test_reader_between_writes_cannot_clobber_them(tmp_json):
    reader = JsonFileStore(tmp_json)
    writer = JsonFileStore(tmp_json)
    assert reader.get("weekly") is None
    writer.update("weekly", lambda old: {"w": "claimed"})
    reader.entries()
    assert writer.get("weekly") == {"w": "claimed"}


def test_update_repairs_corrupt_file_with_backup(tmp_json):
    tmp_json.write_text("{oops", encoding="utf-8")
    JsonFileStore(tmp_json).update("weekly", lambda old: {"w": "t"})
    assert json.loads(tmp_json.read_text()) == {"weekly": {"w": "t"}}
    assert len(list(tmp_json.parent.glob("*.corrupt-*"))) == 1


def test_ensure_creates_file(tmp_json):
    JsonFileStore(tmp_json).ensure()
    assert json.loads(tmp_json.read_text()) == {}
    assert not tmp_json.with_name(tmp_json.name + ".lock").exists()
