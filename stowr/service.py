"""Application-facing service wrapping a storage manager."""

from __future__ import annotations

from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Union

from stowr.config import Config
from stowr.index import FileEntry, create_index
from stowr.storage import StorageManager

PathArg = Union[str, "PathLike[str]"]


@dataclass
class FileInfo:
    """Summary of a stored file for display in a user interface."""

    path: str
    size: int
    compressed_size: int
    created_at: str
    compression_ratio: float

    @classmethod
    def from_entry(cls, entry: FileEntry) -> "FileInfo":
        ratio = (
            entry.compressed_size / entry.file_size * 100.0 if entry.file_size > 0 else 0.0
        )
        return cls(
            path=str(entry.original_path),
            size=entry.file_size,
            compressed_size=entry.compressed_size,
            created_at=entry.created_at,
            compression_ratio=ratio,
        )


class StorageService:
    """Commands over a storage manager that report their outcome as messages."""

    def __init__(self, config: Config | None = None) -> None:
        config = config if config is not None else Config()
        self.storage = StorageManager(config, create_index(config))

    def store_file(self, file_path: PathArg, delete_source: bool = False) -> str:
        self.storage.store_file(Path(file_path), delete_source)
        return f"File '{file_path}' stored successfully"

    def extract_file(self, file_path: PathArg) -> str:
        self.storage.owe_file(Path(file_path))
        return f"File '{file_path}' extracted successfully"

    def list_files(self) -> list[FileInfo]:
        return [FileInfo.from_entry(entry) for entry in self.storage.list_files()]

    def search_files(self, pattern: str) -> list[FileInfo]:
        return [FileInfo.from_entry(entry) for entry in self.storage.search_files(pattern)]

    def delete_file(self, file_path: PathArg) -> str:
        self.storage.delete_file(Path(file_path))
        return f"File '{file_path}' deleted successfully"

    def rename_file(self, old_path: PathArg, new_path: PathArg) -> str:
        self.storage.rename_file(Path(old_path), Path(new_path))
        return f"File renamed from '{old_path}' to '{new_path}'"

    def move_file(self, file_path: PathArg, new_location: PathArg) -> str:
        self.storage.move_file(Path(file_path), Path(new_location))
        return f"File '{file_path}' moved to '{new_location}'"