"""Storage manager: stores files compressed, deduplicated or as deltas, and extracts them."""

from __future__ import annotations

import sys
import uuid
from concurrent.futures import ThreadPoolExecutor
from os import PathLike
from pathlib import Path
from typing import Union

from stowr import codec, patterns
from stowr.config import Config, StowrError
from stowr.dedup import ContentDeduplicator, DedupStats, calculate_hash
from stowr.delta import DeltaStats, DeltaStorage
from stowr.index import FileEntry, IndexStore

PathArg = Union[str, "PathLike[str]"]


def _warn(message: str) -> None:
    print(message, file=sys.stderr)


def _percent(part: int, whole: int) -> float:
    return part / whole * 100.0 if whole else float("nan")


def _read_list_file(list_file: PathArg) -> tuple[list[str], list[str]]:
    try:
        content = Path(list_file).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise StowrError("Failed to read file list") from exc
    return patterns.parse_pattern_list(content)


class StorageManager:
    """Stores files in compressed form and keeps track of them in an index."""

    def __init__(self, config: Config, index: IndexStore) -> None:
        self.config = config
        self.index = index
        self._dedup = ContentDeduplicator()
        self._delta = DeltaStorage(config.similarity_threshold, config.delta_algorithm)
        try:
            self._rebuild_dedup_state()
        except StowrError as exc:
            _warn(f"Warning: Failed to rebuild deduplication state: {exc}")

    # ----------------------------------------------------------------- storing

    def store_file(self, file_path: PathArg, delete_source: bool = False) -> None:
        """Store one file, as a reference, a delta or a new compressed base file."""
        path = Path(file_path)
        if not path.exists():
            raise StowrError(f"File does not exist: {path}")
        if not path.is_file():
            raise StowrError(f"Path is not a file: {path}")

        if self.index.get_file(path) is not None:
            print(f"File already stored: {path}")
            if delete_source:
                self._delete_source(path)
            return

        try:
            content = path.read_bytes()
        except OSError as exc:
            raise StowrError("Failed to read file for hashing") from exc
        file_hash = calculate_hash(content)

        if self.config.enable_deduplication:
            existing = self._find_file_by_hash(file_hash)
            if existing is not None:
                self.index.add_file(self._reference_entry(path, existing))
                self._dedup.add_hash_reference(file_hash, existing.id)
                if delete_source:
                    self._delete_source(path)
                print(f"File deduplicated (reference created): {path}")
                print(f"References existing file with hash: {file_hash}")
                return

        if self.config.enable_delta_compression:
            similar = self._find_similar_file(content)
            if similar is not None:
                base_entry, similarity = similar
                if similarity >= self.config.similarity_threshold:
                    self._store_as_delta(path, content, base_entry, similarity, delete_source)
                    return

        self._store_as_base_file(path, content, file_hash, delete_source)

    def store_files_from_list(self, list_file: PathArg, delete_source: bool = False) -> None:
        """Store every file named or matched by the patterns in ``list_file``."""
        include, exclude = _read_list_file(list_file)

        found: list[Path] = []
        for pattern in include:
            if patterns.has_wildcards(pattern):
                try:
                    files = patterns.expand_glob(pattern)
                except StowrError as exc:
                    _warn(f"Failed to process glob pattern '{pattern}': {exc}")
                    continue
                if files:
                    print(f"Found {len(files)} files matching pattern: {pattern}")
                else:
                    print(f"No files matched pattern: {pattern}")
                found.extend(files)
            else:
                path = Path(pattern)
                if path.exists():
                    found.append(path)

        selected = self._exclude(found, exclude, patterns.matches_glob, "files")

        if self.config.multithread > 1 and len(selected) > 1:
            self._store_files_batch(selected, delete_source)
            return
        for path in selected:
            try:
                self.store_file(path, delete_source)
            except StowrError as exc:
                _warn(f"Failed to store {path}: {exc}")

    def _store_files_batch(self, files: list[Path], delete_source: bool) -> None:
        # Deduplication and delta storage share state, so files go one by one.
        print(
            f"Processing {len(files)} files sequentially to enable "
            "deduplication and delta compression..."
        )
        stored = 0
        for path in files:
            try:
                self.store_file(path, delete_source)
            except StowrError as exc:
                _warn(f"Failed to store {path}: {exc}")
            else:
                stored += 1
        print(f"Stored {stored} files with deduplication and delta compression enabled")

    # -------------------------------------------------------------- extracting

    def owe_file(self, file_path: PathArg) -> None:
        """Restore a stored file to its original path and drop it from the index."""
        path = Path(file_path)
        entry = self.index.get_file(path)
        if entry is None:
            raise StowrError(f"File not found in storage: {path}")

        if entry.is_reference_file():
            self._extract_reference_file(entry)
        elif entry.is_delta_file():
            self._extract_delta_file(entry)
        else:
            try:
                codec.decompress_file(entry.stored_path, entry.original_path)
            except StowrError as exc:
                raise StowrError(f"Failed to decompress file: {exc}") from exc
            releasable = (
                self._dedup.remove_hash_reference(entry.hash) if entry.hash is not None else True
            )
            referenced = self._has_references_to_storage(entry.id)
            if releasable and not referenced and entry.stored_path.exists():
                self._remove_stored(entry.stored_path)

        self.index.remove_file(path)
        print(f"File extracted successfully: {path}")

    def owe_files_from_list(self, list_file: PathArg) -> None:
        """Extract every stored file named or matched by the patterns in ``list_file``."""
        include, exclude = _read_list_file(list_file)

        found: list[Path] = []
        for pattern in include:
            if patterns.has_wildcards(pattern):
                try:
                    files = self._find_stored_by_pattern(pattern)
                except StowrError as exc:
                    _warn(f"Failed to process pattern '{pattern}': {exc}")
                    continue
                found.extend(files)
            else:
                path = Path(pattern)
                if self.index.get_file(path) is not None:
                    found.append(path)

        selected = self._exclude(found, exclude, patterns.matches_stored, "stored files")

        if self.config.multithread > 1 and len(selected) > 1:
            self._owe_files_parallel(selected)
            return
        for path in selected:
            try:
                self.owe_file(path)
            except StowrError as exc:
                _warn(f"Failed to owe {path}: {exc}")

    def owe_all_files(self) -> None:
        """Extract every stored file."""
        entries = self.index.list_files()
        if not entries:
            print("No files stored.")
            return
        print(f"Extracting {len(entries)} stored files...")
        for entry in entries:
            try:
                self.owe_file(entry.original_path)
            except StowrError as exc:
                _warn(f"✗ Failed to extract {entry.original_path}: {exc}")
            else:
                print(f"✓ Extracted: {entry.original_path}")
        print("Extraction complete.")

    def _owe_files_parallel(self, files: list[Path]) -> None:
        entries = [entry for path in files if (entry := self.index.get_file(path)) is not None]

        def extract(entry: FileEntry) -> StowrError | None:
            try:
                codec.decompress_file(entry.stored_path, entry.original_path)
            except StowrError as exc:
                return exc
            return None

        with ThreadPoolExecutor(max_workers=self.config.multithread) as pool:
            errors = list(pool.map(extract, entries))

        extracted = 0
        for entry, error in zip(entries, errors):
            if error is not None:
                _warn(f"Failed to extract file: {error}")
                continue
            try:
                entry.stored_path.unlink()
            except OSError as exc:
                _warn(f"Failed to remove stored file {entry.stored_path}: {exc}")
            try:
                self.index.remove_file(entry.original_path)
            except StowrError as exc:
                _warn(f"Failed to remove from index {entry.original_path}: {exc}")
            else:
                extracted += 1
                print(f"File extracted successfully: {entry.original_path}")
        print(f"Extracted {extracted} files using {self.config.multithread} threads")

    # ------------------------------------------------------------- management

    def list_files(self) -> list[FileEntry]:
        return self.index.list_files()

    def search_files(self, pattern: str) -> list[FileEntry]:
        """Return entries whose original path matches ``pattern``."""
        return [
            entry
            for entry in self.index.list_files()
            if patterns.search_matches(entry.original_path, pattern)
        ]

    def rename_file(self, old_path: PathArg, new_path: PathArg) -> None:
        old, new = Path(old_path), Path(new_path)
        if self.index.get_file(old) is None:
            raise StowrError(f"File not found in storage: {old}")
        if self.index.get_file(new) is not None:
            raise StowrError(f"Target file already exists: {new}")
        try:
            self.index.rename_file(old, new)
        except StowrError as exc:
            raise StowrError(f"Failed to rename file in index: {exc}") from exc
        print(f"File renamed: {old} -> {new}")

    def move_file(self, file_path: PathArg, new_location: PathArg) -> None:
        path = Path(file_path)
        if self.index.get_file(path) is None:
            raise StowrError(f"File not found in storage: {path}")
        if not path.name:
            raise StowrError("Invalid file path")
        new_path = Path(new_location) / path.name
        if self.index.get_file(new_path) is not None:
            raise StowrError(f"Target file already exists: {new_path}")
        try:
            self.index.move_file(path, new_path)
        except StowrError as exc:
            raise StowrError(f"Failed to move file in index: {exc}") from exc
        print(f"File moved: {path} -> {new_path}")

    def delete_file(self, file_path: PathArg) -> None:
        """Remove a file from the index and delete its stored data."""
        path = Path(file_path)
        entry = self.index.remove_file(path)
        if entry is None:
            raise StowrError(f"File not found in storage: {path}")
        if entry.stored_path.exists():
            self._remove_stored(entry.stored_path)
        print(f"File deleted from storage: {path}")

    def glob_to_regex(self, pattern: str) -> str:
        return patterns.glob_to_regex(pattern)

    def dedup_stats(self) -> DedupStats:
        return self._dedup.get_stats()

    def delta_stats(self) -> DeltaStats:
        return self._delta.get_stats()

    def is_dedup_enabled(self) -> bool:
        return self.config.enable_deduplication

    def is_delta_enabled(self) -> bool:
        return self.config.enable_delta_compression

    def similarity_threshold(self) -> float:
        return self.config.similarity_threshold

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _delete_source(path: Path) -> None:
        try:
            path.unlink()
        except OSError as exc:
            raise StowrError("Failed to delete source file") from exc
        print(f"Source file deleted: {path}")

    @staticmethod
    def _remove_stored(path: Path) -> None:
        try:
            path.unlink()
        except OSError as exc:
            raise StowrError("Failed to remove stored file") from exc

    def _exclude(self, files, exclude, matcher, label: str) -> list[Path]:
        if not exclude:
            return list(files)
        kept = [path for path in files if not any(matcher(path, p) for p in exclude)]
        if len(kept) != len(files):
            print(f"Excluded {len(files) - len(kept)} {label} based on exclude patterns")
        return kept

    def _find_stored_by_pattern(self, pattern: str) -> list[Path]:
        matched = [
            entry.original_path
            for entry in self.index.list_files()
            if patterns.matches_stored(entry.original_path, pattern)
        ]
        if matched:
            print(f"Found {len(matched)} stored files matching pattern: {pattern}")
        else:
            print(f"No stored files matched pattern: {pattern}")
        return matched

    def _new_stored_path(self) -> tuple[str, Path]:
        entry_id = str(uuid.uuid4())
        extension = self.config.compression_algorithm.file_extension()
        storage = Path(self.config.storage_path)
        try:
            storage.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StowrError("Failed to create storage directory") from exc
        return entry_id, storage / f"{entry_id}.{extension}"

    def _compress(self, data: bytes, output_path: Path, context: str) -> int:
        try:
            return codec.compress_to_file(
                data,
                output_path,
                self.config.compression_algorithm,
                self.config.compression_level,
            )
        except StowrError as exc:
            raise StowrError(f"{context}: {exc}") from exc

    def _add_to_index(self, entry: FileEntry, context: str) -> None:
        try:
            self.index.add_file(entry)
        except StowrError as exc:
            raise StowrError(f"{context}: {exc}") from exc

    @staticmethod
    def _read_stored(entry: FileEntry) -> bytes:
        return codec.read_compressed(entry.stored_path, entry.compression_algorithm)

    @staticmethod
    def _is_base(entry: FileEntry) -> bool:
        return not entry.is_reference_file() and not entry.is_delta_file()

    def _find_file_by_hash(self, hash_value: str) -> FileEntry | None:
        for entry in self.index.list_files():
            if entry.hash == hash_value and self._is_base(entry):
                return entry
        return None

    def _find_file_by_storage_id(self, storage_id: str) -> FileEntry | None:
        return next((e for e in self.index.list_files() if e.id == storage_id), None)

    def _find_similar_file(self, content: bytes) -> tuple[FileEntry, float] | None:
        best: tuple[FileEntry, float] | None = None
        for entry in self.index.list_files():
            if not self._is_base(entry):
                continue
            try:
                stored = self._read_stored(entry)
            except StowrError:
                continue
            similarity = self._delta.calculate_similarity(content, stored)
            if best is None or similarity > best[1]:
                best = (entry, similarity)
        return best

    @staticmethod
    def _reference_entry(path: Path, existing: FileEntry) -> FileEntry:
        return FileEntry(
            id=str(uuid.uuid4()),
            original_path=path,
            stored_path=existing.stored_path,
            file_size=existing.file_size,
            compressed_size=0,
            compression_algorithm=existing.compression_algorithm,
            is_reference=True,
            base_storage_id=existing.id,
            hash=existing.hash,
        )

    def _store_as_delta(
        self,
        path: Path,
        content: bytes,
        base_entry: FileEntry,
        similarity: float,
        delete_source: bool,
    ) -> None:
        base_content = self._read_stored(base_entry)
        delta_data = self._delta.create_delta(base_content, content)
        entry_id, stored_path = self._new_stored_path()
        size = self._compress(delta_data, stored_path, "Failed to compress delta data")
        entry = FileEntry(
            id=entry_id,
            original_path=path,
            stored_path=stored_path,
            file_size=len(content),
            compressed_size=size,
            compression_algorithm=self.config.compression_algorithm,
            is_delta=True,
            base_storage_id=base_entry.id,
            similarity_score=similarity,
            hash=calculate_hash(content),
        )
        self._add_to_index(entry, "Failed to add delta file to index")
        if delete_source:
            self._delete_source(path)
        print(f"File stored as delta: {path}")
        print(
            f"Similarity: {similarity * 100.0:.1f}%, "
            f"Delta size: {_percent(size, len(content)):.1f}%"
        )

    def _store_as_base_file(
        self, path: Path, content: bytes, hash_value: str, delete_source: bool
    ) -> None:
        entry_id, stored_path = self._new_stored_path()
        size = self._compress(content, stored_path, "Failed to compress file")
        entry = FileEntry(
            id=entry_id,
            original_path=path,
            stored_path=stored_path,
            file_size=len(content),
            compressed_size=size,
            compression_algorithm=self.config.compression_algorithm,
            hash=hash_value,
        )
        if self.config.enable_deduplication:
            self._dedup.register_file(hash_value, entry_id)
        self._add_to_index(entry, "Failed to add file to index")
        if delete_source:
            self._delete_source(path)
        print(f"File stored successfully: {path}")
        print(f"Compression ratio: {_percent(size, len(content)):.1f}%")

    def _extract_reference_file(self, entry: FileEntry) -> None:
        try:
            codec.decompress_file(entry.stored_path, entry.original_path)
        except StowrError as exc:
            raise StowrError(f"Failed to decompress reference file: {exc}") from exc
        if entry.base_storage_id is None:
            return
        others = self._has_other_references_to_storage(
            entry.base_storage_id, entry.original_path
        )
        releasable = (
            self._dedup.remove_hash_reference(entry.hash) if entry.hash is not None else False
        )
        if not others and releasable and entry.stored_path.exists():
            self._remove_stored(entry.stored_path)

    def _extract_delta_file(self, entry: FileEntry) -> None:
        if entry.base_storage_id is None:
            raise StowrError("Delta file missing base storage ID")
        base_entry = self._find_file_by_storage_id(entry.base_storage_id)
        if base_entry is None:
            raise StowrError(f"Base file not found for delta: {entry.base_storage_id}")
        base_content = self._read_stored(base_entry)
        delta_data = self._read_stored(entry)
        content = self._delta.apply_delta(base_content, delta_data)
        target = entry.original_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StowrError("Failed to create output directory") from exc
        try:
            target.write_bytes(content)
        except OSError as exc:
            raise StowrError("Failed to write reconstructed file") from exc
        if entry.stored_path.exists():
            try:
                entry.stored_path.unlink()
            except OSError as exc:
                raise StowrError("Failed to remove delta file") from exc

    def _rebuild_dedup_state(self) -> None:
        entries = self.index.list_files()
        counts: dict[str, int] = {}
        for entry in entries:
            if entry.hash is not None:
                counts[entry.hash] = counts.get(entry.hash, 0) + 1
        self._dedup.rebuild_from_index(
            (entry.id, entry.hash, counts[entry.hash])
            for entry in entries
            if entry.hash is not None and self._is_base(entry)
        )

    @staticmethod
    def _refers_to(entry: FileEntry, storage_id: str) -> bool:
        return (
            entry.is_reference_file() or entry.is_delta_file()
        ) and entry.base_storage_id == storage_id

    def _has_references_to_storage(self, storage_id: str) -> bool:
        return any(self._refers_to(e, storage_id) for e in self.index.list_files())

    def _has_other_references_to_storage(self, storage_id: str, exclude_path: Path) -> bool:
        return any(
            self._refers_to(e, storage_id)
            for e in self.index.list_files()
            if e.original_path != Path(exclude_path)
        )