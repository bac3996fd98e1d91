"""File index: entries for stored files, kept in a JSON file or an SQLite database."""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from os import PathLike
from pathlib import Path
from typing import Any, Union

from stowr.config import (
    CompressionAlgorithm,
    Config,
    DeltaAlgorithm,
    IndexMode,
    StowrError,
)
from stowr.dedup import DedupInfo
from stowr.delta import DeltaInfo

PathArg = Union[str, "PathLike[str]"]

JSON_INDEX_NAME = "index.json"
SQLITE_INDEX_NAME = "index.db"
SQLITE_THRESHOLD = 1000


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _get_str(data: dict, key: str, optional: bool = False) -> str | None:
    if key not in data or data[key] is None:
        if optional:
            return None
        raise StowrError(f"Missing index field: {key}")
    value = data[key]
    if not isinstance(value, str):
        raise StowrError(f"Invalid value for {key}: {value!r}")
    return value


def _get_uint(data: dict, key: str, optional: bool = False) -> int | None:
    if key not in data or data[key] is None:
        if optional:
            return None
        raise StowrError(f"Missing index field: {key}")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise StowrError(f"Invalid value for {key}: {value!r}")
    return value


def _get_bool(data: dict, key: str) -> bool | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise StowrError(f"Invalid value for {key}: {value!r}")
    return value


def _get_float(data: dict, key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise StowrError(f"Invalid value for {key}: {value!r}")
    return float(value)


@dataclass
class FileEntry:
    """Index record for one stored file."""

    id: str
    original_path: Path
    stored_path: Path
    file_size: int
    compressed_size: int
    compression_algorithm: CompressionAlgorithm
    created_at: str = field(default_factory=_now)
    hash: str | None = None
    is_reference: bool | None = None
    original_storage_id: str | None = None
    ref_count: int | None = None
    is_delta: bool | None = None
    base_storage_id: str | None = None
    similarity_score: float | None = None
    delta_algorithm: DeltaAlgorithm | None = None

    def __post_init__(self) -> None:
        self.original_path = Path(self.original_path)
        self.stored_path = Path(self.stored_path)

    def set_dedup_info(self, dedup_info: DedupInfo) -> None:
        self.hash = dedup_info.hash
        self.is_reference = dedup_info.is_reference
        self.original_storage_id = dedup_info.original_storage_id
        self.ref_count = dedup_info.ref_count

    def set_delta_info(self, delta_info: DeltaInfo) -> None:
        self.is_delta = delta_info.is_delta
        self.base_storage_id = delta_info.base_storage_id
        self.similarity_score = delta_info.similarity_score
        self.delta_algorithm = delta_info.delta_algorithm
        self.compressed_size = delta_info.delta_size

    def is_reference_file(self) -> bool:
        return bool(self.is_reference)

    def is_delta_file(self) -> bool:
        return bool(self.is_delta)

    def actual_storage_size(self) -> int:
        """Bytes this entry occupies in storage; references occupy none."""
        return 0 if self.is_reference_file() else self.compressed_size

    def to_dict(self) -> dict[str, Any]:
        """Return the entry in its JSON index form, leaving out unset fields."""
        data: dict[str, Any] = {
            "id": self.id,
            "original_path": str(self.original_path),
            "stored_path": str(self.stored_path),
            "file_size": self.file_size,
            "compressed_size": self.compressed_size,
            "created_at": self.created_at,
            "compression_algorithm": self.compression_algorithm.serial_name,
        }
        optional = {
            "hash": self.hash,
            "is_reference": self.is_reference,
            "original_storage_id": self.original_storage_id,
            "ref_count": self.ref_count,
            "is_delta": self.is_delta,
            "base_storage_id": self.base_storage_id,
            "similarity_score": self.similarity_score,
            "delta_algorithm": (
                self.delta_algorithm.serial_name if self.delta_algorithm is not None else None
            ),
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "FileEntry":
        """Build an entry from its JSON index form."""
        if not isinstance(data, dict):
            raise StowrError("Index entry must be a JSON object")
        if "compression_algorithm" not in data:
            raise StowrError("Missing index field: compression_algorithm")
        delta_name = data.get("delta_algorithm")
        return cls(
            id=_get_str(data, "id"),
            original_path=Path(_get_str(data, "original_path")),
            stored_path=Path(_get_str(data, "stored_path")),
            file_size=_get_uint(data, "file_size"),
            compressed_size=_get_uint(data, "compressed_size"),
            created_at=_get_str(data, "created_at"),
            compression_algorithm=CompressionAlgorithm.from_serial(data["compression_algorithm"]),
            hash=_get_str(data, "hash", optional=True),
            is_reference=_get_bool(data, "is_reference"),
            original_storage_id=_get_str(data, "original_storage_id", optional=True),
            ref_count=_get_uint(data, "ref_count", optional=True),
            is_delta=_get_bool(data, "is_delta"),
            base_storage_id=_get_str(data, "base_storage_id", optional=True),
            similarity_score=_get_float(data, "similarity_score"),
            delta_algorithm=(
                DeltaAlgorithm.from_serial(delta_name) if delta_name is not None else None
            ),
        )


class IndexStore(ABC):
    """Storage for file entries keyed by their original path."""

    @abstractmethod
    def add_file(self, entry: FileEntry) -> None:
        """Add or replace the entry for ``entry.original_path``."""

    @abstractmethod
    def get_file(self, original_path: PathArg) -> FileEntry | None:
        """Return the entry for ``original_path``, if any."""

    @abstractmethod
    def remove_file(self, original_path: PathArg) -> FileEntry | None:
        """Remove and return the entry for ``original_path``, if any."""

    @abstractmethod
    def list_files(self) -> list[FileEntry]:
        """Return every entry."""

    @abstractmethod
    def rename_file(self, old_path: PathArg, new_path: PathArg) -> None:
        """Re-key the entry at ``old_path`` to ``new_path``."""

    @abstractmethod
    def move_file(self, original_path: PathArg, new_path: PathArg) -> None:
        """Re-key the entry at ``original_path`` to ``new_path``."""

    @abstractmethod
    def count(self) -> int:
        """Return the number of entries."""


class JsonIndex(IndexStore):
    """Index kept as a pretty-printed JSON object in ``index.json``."""

    def __init__(self, storage_path: PathArg) -> None:
        self.index_path = Path(storage_path) / JSON_INDEX_NAME
        self._entries: dict[Path, FileEntry] = {}
        if self.index_path.exists():
            try:
                content = self.index_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise StowrError("Failed to read index file") from exc
            self._entries = self._parse(content)

    @staticmethod
    def _parse(content: str) -> dict[Path, FileEntry]:
        # An unreadable index is treated as empty.
        try:
            raw = json.loads(content)
            if not isinstance(raw, dict):
                return {}
            return {Path(key): FileEntry.from_dict(value) for key, value in raw.items()}
        except (json.JSONDecodeError, StowrError):
            return {}

    def _save(self) -> None:
        content = json.dumps(
            {str(path): entry.to_dict() for path, entry in self._entries.items()},
            indent=2,
            ensure_ascii=False,
        )
        try:
            self.index_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise StowrError("Failed to write index file") from exc

    def add_file(self, entry: FileEntry) -> None:
        self._entries[Path(entry.original_path)] = entry
        self._save()

    def get_file(self, original_path: PathArg) -> FileEntry | None:
        return self._entries.get(Path(original_path))

    def remove_file(self, original_path: PathArg) -> FileEntry | None:
        entry = self._entries.pop(Path(original_path), None)
        self._save()
        return entry

    def list_files(self) -> list[FileEntry]:
        return list(self._entries.values())

    def rename_file(self, old_path: PathArg, new_path: PathArg) -> None:
        entry = self._entries.pop(Path(old_path), None)
        if entry is None:
            return
        entry.original_path = Path(new_path)
        self._entries[Path(new_path)] = entry
        self._save()

    def move_file(self, original_path: PathArg, new_path: PathArg) -> None:
        self.rename_file(original_path, new_path)

    def count(self) -> int:
        return len(self._entries)


_COLUMNS = (
    "original_path",
    "id",
    "stored_path",
    "file_size",
    "compressed_size",
    "created_at",
    "compression_algorithm",
    "hash",
    "is_reference",
    "original_storage_id",
    "ref_count",
    "is_delta",
    "base_storage_id",
    "similarity_score",
    "delta_algorithm",
)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS files (
    original_path TEXT PRIMARY KEY,
    id TEXT NOT NULL,
    stored_path TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    compressed_size INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    compression_algorithm TEXT NOT NULL DEFAULT 'gzip',
    hash TEXT,
    is_reference INTEGER DEFAULT 0,
    original_storage_id TEXT,
    ref_count INTEGER DEFAULT 1,
    is_delta INTEGER DEFAULT 0,
    base_storage_id TEXT,
    similarity_score REAL,
    delta_algorithm TEXT
)
"""

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM files"
_INSERT = (
    f"INSERT OR REPLACE INTO files ({', '.join(_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _COLUMNS)})"
)
_UPDATE_PATH = "UPDATE files SET original_path = ? WHERE original_path = ?"


def _int_to_bool(value: int | None) -> bool | None:
    return None if value is None else value != 0


def _bool_to_int(value: bool | None) -> int | None:
    return None if value is None else int(value)


def _row_to_entry(row: tuple) -> FileEntry:
    (
        original_path,
        entry_id,
        stored_path,
        file_size,
        compressed_size,
        created_at,
        compression_name,
        hash_value,
        is_reference,
        original_storage_id,
        ref_count,
        is_delta,
        base_storage_id,
        similarity_score,
        delta_name,
    ) = row
    try:
        compression = CompressionAlgorithm.parse(compression_name)
    except (StowrError, AttributeError):
        raise StowrError(
            f"Invalid column type for compression_algorithm: {compression_name!r}"
        ) from None
    delta_algorithm = None
    if delta_name is not None:
        try:
            delta_algorithm = DeltaAlgorithm.parse(delta_name)
        except (StowrError, AttributeError):
            raise StowrError(f"Invalid column type for delta_algorithm: {delta_name!r}") from None
    return FileEntry(
        id=entry_id,
        original_path=Path(original_path),
        stored_path=Path(stored_path),
        file_size=file_size,
        compressed_size=compressed_size,
        created_at=created_at,
        compression_algorithm=compression,
        hash=hash_value,
        is_reference=_int_to_bool(is_reference),
        original_storage_id=original_storage_id,
        ref_count=ref_count,
        is_delta=_int_to_bool(is_delta),
        base_storage_id=base_storage_id,
        similarity_score=similarity_score,
        delta_algorithm=delta_algorithm,
    )


class SqliteIndex(IndexStore):
    """Index kept in the ``files`` table of ``index.db``."""

    def __init__(self, storage_path: PathArg) -> None:
        db_path = Path(storage_path) / SQLITE_INDEX_NAME
        try:
            self._conn = sqlite3.connect(str(db_path))
        except sqlite3.Error as exc:
            raise StowrError("Failed to open SQLite database") from exc
        self._execute(_CREATE_TABLE)

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            with self._conn:
                return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StowrError(f"SQLite error: {exc}") from exc

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StowrError(f"SQLite error: {exc}") from exc

    def add_file(self, entry: FileEntry) -> None:
        self._execute(
            _INSERT,
            (
                str(entry.original_path),
                entry.id,
                str(entry.stored_path),
                entry.file_size,
                entry.compressed_size,
                entry.created_at,
                str(entry.compression_algorithm),
                entry.hash,
                _bool_to_int(entry.is_reference),
                entry.original_storage_id,
                entry.ref_count,
                _bool_to_int(entry.is_delta),
                entry.base_storage_id,
                entry.similarity_score,
                str(entry.delta_algorithm) if entry.delta_algorithm is not None else None,
            ),
        )

    def get_file(self, original_path: PathArg) -> FileEntry | None:
        rows = self._query(f"{_SELECT} WHERE original_path = ?", (str(Path(original_path)),))
        if not rows:
            return None
        entry = _row_to_entry(rows[0])
        entry.original_path = Path(original_path)
        return entry

    def remove_file(self, original_path: PathArg) -> FileEntry | None:
        entry = self.get_file(original_path)
        if entry is not None:
            self._execute(
                "DELETE FROM files WHERE original_path = ?", (str(Path(original_path)),)
            )
        return entry

    def list_files(self) -> list[FileEntry]:
        return [_row_to_entry(row) for row in self._query(_SELECT)]

    def rename_file(self, old_path: PathArg, new_path: PathArg) -> None:
        self._execute(_UPDATE_PATH, (str(Path(new_path)), str(Path(old_path))))

    def move_file(self, original_path: PathArg, new_path: PathArg) -> None:
        self._execute(_UPDATE_PATH, (str(Path(new_path)), str(Path(original_path))))

    def count(self) -> int:
        (total,) = self._query("SELECT COUNT(*) FROM files")[0]
        return int(total)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> "SqliteIndex":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def create_index(config: Config) -> IndexStore:
    """Open the index chosen by ``config.index_mode`` in the storage directory."""
    storage_path = Path(config.storage_path)
    try:
        storage_path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StowrError("Failed to create storage directory") from exc

    mode = config.index_mode
    if mode is IndexMode.AUTO:
        existing = JsonIndex(storage_path).count()
        mode = IndexMode.SQLITE if existing >= SQLITE_THRESHOLD else IndexMode.JSON

    if mode is IndexMode.SQLITE:
        return SqliteIndex(storage_path)
    return JsonIndex(storage_path)