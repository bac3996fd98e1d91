from pathlib import Path

import pytest

from stowr.config import CompressionAlgorithm, Config, StowrError
from stowr.index import FileEntry
from stowr.service import FileInfo, StorageService


def make_service(tmp_path):
    return StorageService(Config(storage_path=tmp_path / "store"))


def test_file_info_zero_size_ratio():
    entry = FileEntry(
        id="x",
        original_path=Path("empty.txt"),
        stored_path=Path("x.gz"),
        file_size=0,
        compressed_size=20,
        compression_algorithm=CompressionAlgorithm.GZIP,
    )
    info = FileInfo.from_entry(entry)
    assert info.compression_ratio == 0.0
    assert info.path == "empty.txt"
    assert info.created_at == entry.created_at


def test_file_info_ratio():
    entry = FileEntry(
        id="y",
        original_path=Path("f.bin"),
        stored_path=Path("y.gz"),
        file_size=200,
        compressed_size=50,
        compression_algorithm=CompressionAlgorithm.GZIP,
    )
    assert FileInfo.from_entry(entry).compression_ratio == 25.0


def test_store_list_and_extract(tmp_path):
    service = make_service(tmp_path)
    src = tmp_path / "doc.txt"
    src.write_bytes(b"document body " * 10)
    message = service.store_file(str(src), True)
    assert message == f"File '{src}' stored successfully"
    (info,) = service.list_files()
    assert info.path == str(src)
    assert info.size == len(b"document body " * 10)
    assert service.extract_file(str(src)) == f"File '{src}' extracted successfully"
    assert src.read_bytes() == b"document body " * 10
    assert service.list_files() == []


def test_search_rename_move_delete(tmp_path):
    service = make_service(tmp_path)
    src = tmp_path / "a.txt"
    src.write_bytes(b"alpha")
    service.store_file(src)
    assert [i.path for i in service.search_files("*.txt")] == [str(src)]
    new = tmp_path / "b.txt"
    assert service.rename_file(src, new) == f"File renamed from '{src}' to '{new}'"
    dest = tmp_path / "sub"
    assert service.move_file(new, dest) == f"File '{new}' moved to '{dest}'"
    moved = dest / "b.txt"
    assert [i.path for i in service.list_files()] == [str(moved)]
    assert service.delete_file(moved) == f"File '{moved}' deleted successfully"
    assert service.list_files() == []


def test_errors_propagate(tmp_path):
    service = make_service(tmp_path)
    with pytest.raises(StowrError, match="File not found in storage"):
        service.extract_file(tmp_path / "ghost.txt")
    with pytest.raises(StowrError, match="File does not exist"):
        service.store_file(tmp_path / "ghost.txt")