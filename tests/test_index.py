import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from stowr.config import CompressionAlgorithm, Config, DeltaAlgorithm, IndexMode, StowrError
from stowr.dedup import DedupInfo
from stowr.delta import DeltaInfo
from stowr.index import FileEntry, JsonIndex, SqliteIndex, create_index


def make_entry(path="docs/a.txt", entry_id="id-1", **extra):
    entry = FileEntry(
        id=entry_id,
        original_path=Path(path),
        stored_path=Path("storage") / f"{entry_id}.gz",
        file_size=100,
        compressed_size=40,
        compression_algorithm=CompressionAlgorithm.GZIP,
    )
    for key, value in extra.items():
        setattr(entry, key, value)
    return entry


def full_entry(path="docs/full.bin"):
    return make_entry(
        path,
        "id-full",
        hash="ab" * 32,
        is_reference=True,
        original_storage_id="orig-1",
        ref_count=3,
        is_delta=False,
        base_storage_id="base-1",
        similarity_score=0.5,
        delta_algorithm=DeltaAlgorithm.SIMPLE,
    )


@pytest.fixture(params=["json", "sqlite"])
def store(request, tmp_path):
    if request.param == "json":
        yield JsonIndex(tmp_path)
    else:
        index = SqliteIndex(tmp_path)
        yield index
        index.close()


def test_new_entry_defaults():
    entry = make_entry()
    assert entry.hash is None
    assert entry.ref_count is None
    assert entry.is_reference_file() is False
    assert entry.is_delta_file() is False
    assert entry.actual_storage_size() == entry.compressed_size
    created = datetime.fromisoformat(entry.created_at)
    assert created.utcoffset() == timedelta(0)


def test_reference_entry_occupies_no_storage():
    entry = make_entry(is_reference=True)
    assert entry.is_reference_file() is True
    assert entry.actual_storage_size() == 0


def test_set_dedup_info():
    entry = make_entry()
    entry.set_dedup_info(
        DedupInfo(is_reference=True, original_storage_id="orig", hash="h", ref_count=2)
    )
    assert entry.hash == "h"
    assert entry.is_reference is True
    assert entry.original_storage_id == "orig"
    assert entry.ref_count == 2


def test_set_delta_info_replaces_compressed_size():
    entry = make_entry()
    entry.set_delta_info(
        DeltaInfo(
            is_delta=True,
            base_storage_id="base",
            similarity_score=0.75,
            delta_algorithm=DeltaAlgorithm.SIMPLE,
            original_size=100,
            delta_size=7,
        )
    )
    assert entry.is_delta_file() is True
    assert entry.base_storage_id == "base"
    assert entry.similarity_score == 0.75
    assert entry.delta_algorithm is DeltaAlgorithm.SIMPLE
    assert entry.compressed_size == 7


def test_to_dict_uses_variant_names_and_skips_unset():
    entry = make_entry()
    entry.compression_algorithm = CompressionAlgorithm.ZSTD
    data = entry.to_dict()
    assert data["compression_algorithm"] == "Zstd"
    assert data["original_path"] == str(Path("docs/a.txt"))
    for key in ("hash", "is_reference", "ref_count", "delta_algorithm", "similarity_score"):
        assert key not in data


def test_dict_round_trip():
    entry = full_entry()
    data = entry.to_dict()
    assert data["delta_algorithm"] == "Simple"
    assert FileEntry.from_dict(json.loads(json.dumps(data))) == entry


def test_from_dict_missing_field():
    data = make_entry().to_dict()
    del data["stored_path"]
    with pytest.raises(StowrError):
        FileEntry.from_dict(data)


def test_from_dict_bad_algorithm():
    data = make_entry().to_dict()
    data["compression_algorithm"] = "gzip"
    with pytest.raises(StowrError):
        FileEntry.from_dict(data)


def test_add_and_get(store):
    entry = full_entry()
    store.add_file(entry)
    assert store.get_file(entry.original_path) == entry
    assert store.get_file("missing.txt") is None
    assert store.count() == 1


def test_add_replaces_same_path(store):
    store.add_file(make_entry("a.txt", "first"))
    store.add_file(make_entry("a.txt", "second"))
    assert store.count() == 1
    assert store.get_file("a.txt").id == "second"


def test_remove_returns_entry(store):
    entry = make_entry("a.txt")
    store.add_file(entry)
    assert store.remove_file("a.txt") == entry
    assert store.remove_file("a.txt") is None
    assert store.count() == 0


def test_list_files(store):
    entries = [make_entry(f"f{n}.txt", f"id-{n}") for n in range(3)]
    for entry in entries:
        store.add_file(entry)
    listed = sorted(store.list_files(), key=lambda e: e.id)
    assert listed == entries


def test_rename_file(store):
    store.add_file(make_entry("old.txt", "id-r"))
    store.rename_file("old.txt", "new.txt")
    assert store.get_file("old.txt") is None
    renamed = store.get_file("new.txt")
    assert renamed.id == "id-r"
    assert renamed.original_path == Path("new.txt")
    assert store.list_files()[0].original_path == Path("new.txt")


def test_move_file(store):
    store.add_file(make_entry("a.txt", "id-m"))
    target = Path("dir") / "a.txt"
    store.move_file("a.txt", target)
    assert store.get_file("a.txt") is None
    assert store.get_file(target).id == "id-m"
    assert store.count() == 1


def test_rename_missing_is_noop(store):
    store.add_file(make_entry("a.txt"))
    store.rename_file("nothing.txt", "other.txt")
    assert store.get_file("other.txt") is None
    assert store.count() == 1


def test_json_index_persists(tmp_path):
    entry = full_entry()
    JsonIndex(tmp_path).add_file(entry)
    on_disk = json.loads((tmp_path / "index.json").read_text(encoding="utf-8"))
    assert list(on_disk) == [str(entry.original_path)]
    assert JsonIndex(tmp_path).get_file(entry.original_path) == entry


def test_json_index_corrupt_file_is_empty(tmp_path):
    (tmp_path / "index.json").write_text("{not json", encoding="utf-8")
    index = JsonIndex(tmp_path)
    assert index.count() == 0
    assert index.list_files() == []


def test_sqlite_index_persists(tmp_path):
    entry = full_entry()
    with SqliteIndex(tmp_path) as index:
        index.add_file(entry)
    with SqliteIndex(tmp_path) as index:
        assert index.get_file(entry.original_path) == entry
        assert index.count() == 1


def test_sqlite_keeps_unset_optionals(tmp_path):
    entry = make_entry()
    with SqliteIndex(tmp_path) as index:
        index.add_file(entry)
        loaded = index.list_files()[0]
    assert loaded.is_reference is None
    assert loaded.ref_count is None
    assert loaded.delta_algorithm is None


def test_sqlite_bad_algorithm_column(tmp_path):
    with SqliteIndex(tmp_path) as index:
        conn = sqlite3.connect(str(tmp_path / "index.db"))
        with conn:
            conn.execute(
                "INSERT INTO files (original_path, id, stored_path, file_size, "
                "compressed_size, created_at, compression_algorithm) "
                "VALUES ('x.txt', 'i', 's', 1, 1, 't', 'rar')"
            )
        conn.close()
        with pytest.raises(StowrError):
            index.get_file("x.txt")
        with pytest.raises(StowrError):
            index.list_files()


def test_sqlite_rename_onto_existing_fails(tmp_path):
    with SqliteIndex(tmp_path) as index:
        index.add_file(make_entry("a.txt", "a"))
        index.add_file(make_entry("b.txt", "b"))
        with pytest.raises(StowrError):
            index.rename_file("a.txt", "b.txt")
        assert index.get_file("a.txt").id == "a"


def test_sqlite_open_failure(tmp_path):
    with pytest.raises(StowrError):
        SqliteIndex(tmp_path / "missing" / "dir")


def test_create_index_auto_small_uses_json(tmp_path):
    storage = tmp_path / "store"
    index = create_index(Config(storage_path=storage, index_mode=IndexMode.AUTO))
    assert storage.is_dir()
    assert isinstance(index, JsonIndex)
    index.add_file(make_entry())
    assert (storage / "index.json").exists()


def test_create_index_sqlite_mode(tmp_path):
    index = create_index(Config(storage_path=tmp_path, index_mode=IndexMode.SQLITE))
    try:
        assert isinstance(index, SqliteIndex)
        index.add_file(make_entry())
        assert index.count() == 1
        assert (tmp_path / "index.db").exists()
    finally:
        index.close()


def _write_json_index(path, count):
    data = {
        f"f{n}.txt": make_entry(f"f{n}.txt", f"id-{n}").to_dict() for n in range(count)
    }
    (path / "index.json").write_text(json.dumps(data), encoding="utf-8")


def test_create_index_auto_switches_to_sqlite_at_threshold(tmp_path):
    _write_json_index(tmp_path, 1000)
    index = create_index(Config(storage_path=tmp_path, index_mode=IndexMode.AUTO))
    try:
        assert isinstance(index, SqliteIndex)
        assert index.count() == 0
    finally:
        index.close()


def test_create_index_auto_below_threshold(tmp_path):
    _write_json_index(tmp_path, 999)
    index = create_index(Config(storage_path=tmp_path, index_mode=IndexMode.AUTO))
    assert isinstance(index, JsonIndex)
    assert index.count() == 999