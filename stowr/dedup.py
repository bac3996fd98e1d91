"""Content deduplication by SHA-256 hash with reference counting."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable


def calculate_hash(data: bytes) -> str:
    """Return the lower-case hex SHA-256 digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


@dataclass
class DedupInfo:
    """Deduplication details for one stored file."""

    is_reference: bool
    original_storage_id: str | None
    hash: str
    ref_count: int


@dataclass
class DedupStats:
    """Summary of the deduplicator's state."""

    total_files: int
    unique_files: int
    duplicate_files: int
    dedup_ratio: float


class ContentDeduplicator:
    """Tracks which storage holds each content hash and how often it is used."""

    def __init__(self) -> None:
        self._hash_to_storage: dict[str, str] = {}
        self._ref_counts: dict[str, int] = {}
        self._storage_to_hash: dict[str, str] = {}

    def check_duplicate(self, hash_value: str) -> str | None:
        """Return the storage id holding ``hash_value`` and count one more use of it."""
        storage_id = self._hash_to_storage.get(hash_value)
        if storage_id is None:
            return None
        self._ref_counts[storage_id] = self._ref_counts.get(storage_id, 0) + 1
        return storage_id

    def register_file(self, hash_value: str, storage_id: str) -> None:
        """Record a newly stored file with a single reference."""
        self._hash_to_storage[hash_value] = storage_id
        self._storage_to_hash[storage_id] = hash_value
        self._ref_counts[storage_id] = 1

    def remove_reference(self, storage_id: str) -> bool:
        """Drop one reference; return True when the stored data may be deleted."""
        count = self._ref_counts.get(storage_id)
        if count is None:
            return True
        if count > 1:
            self._ref_counts[storage_id] = count - 1
            return False
        del self._ref_counts[storage_id]
        hash_value = self._storage_to_hash.pop(storage_id, None)
        if hash_value is not None:
            self._hash_to_storage.pop(hash_value, None)
        return True

    def remove_hash_reference(self, hash_value: str) -> bool:
        """Drop one reference to the storage holding ``hash_value``."""
        storage_id = self._hash_to_storage.get(hash_value)
        if storage_id is None:
            return True
        return self.remove_reference(storage_id)

    def add_hash_reference(self, hash_value: str, storage_id: str) -> None:
        """Count one more use of ``storage_id`` for ``hash_value``."""
        existing = self._hash_to_storage.get(hash_value)
        if existing is not None:
            if existing == storage_id:
                self._ref_counts[storage_id] = self._ref_counts.get(storage_id, 0) + 1
            return
        self._hash_to_storage[hash_value] = storage_id
        self._storage_to_hash[storage_id] = hash_value
        self._ref_counts[storage_id] = self._ref_counts.get(storage_id, 0) + 1

    def storage_for_hash(self, hash_value: str) -> str | None:
        """Return the storage id registered for ``hash_value``, if any."""
        return self._hash_to_storage.get(hash_value)

    def get_dedup_info(self, storage_id: str) -> DedupInfo | None:
        hash_value = self._storage_to_hash.get(storage_id)
        if hash_value is None:
            return None
        ref_count = self._ref_counts.get(storage_id, 0)
        return DedupInfo(
            is_reference=ref_count > 1,
            original_storage_id=None,
            hash=hash_value,
            ref_count=ref_count,
        )

    def get_reference_info(self, hash_value: str) -> DedupInfo | None:
        storage_id = self._hash_to_storage.get(hash_value)
        if storage_id is None:
            return None
        return DedupInfo(
            is_reference=True,
            original_storage_id=storage_id,
            hash=hash_value,
            ref_count=self._ref_counts.get(storage_id, 0),
        )

    def get_stats(self) -> DedupStats:
        total = sum(self._ref_counts.values())
        unique = len(self._ref_counts)
        duplicates = max(total - unique, 0)
        return DedupStats(
            total_files=total,
            unique_files=unique,
            duplicate_files=duplicates,
            dedup_ratio=duplicates / total if total > 0 else 0.0,
        )

    def rebuild_from_index(self, entries: Iterable[tuple[str, str, int]]) -> None:
        """Replace all state with ``(storage_id, hash, ref_count)`` entries."""
        self._hash_to_storage.clear()
        self._ref_counts.clear()
        self._storage_to_hash.clear()
        for storage_id, hash_value, ref_count in entries:
            self._hash_to_storage[hash_value] = storage_id
            self._storage_to_hash[storage_id] = hash_value
            self._ref_counts[storage_id] = ref_count