"""Delta storage: similarity detection and a simple binary delta format."""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

from stowr.config import DeltaAlgorithm, StowrError

DELTA_MAGIC = b"STOWR_DELTA_V1"
_HEADER = struct.Struct("<QQ")
_LENGTH = struct.Struct("<I")
_HEADER_SIZE = len(DELTA_MAGIC) + _HEADER.size

COPY = 0x01
INSERT = 0x02


class DeltaError(StowrError):
    """Raised when a delta cannot be created or applied."""


@dataclass
class BaseFileInfo:
    """Metadata kept for each base file."""

    size: int
    file_type: str
    created_at: int
    reference_count: int = 0


@dataclass
class DeltaInfo:
    """Delta details for one stored file."""

    is_delta: bool
    base_storage_id: str | None
    similarity_score: float | None
    delta_algorithm: DeltaAlgorithm
    original_size: int
    delta_size: int


@dataclass
class SimilarityMatch:
    """The best base file found for some data."""

    base_storage_id: str
    similarity_score: float
    estimated_compression: float


@dataclass
class DeltaStats:
    """Summary of the delta store's state."""

    total_base_files: int
    total_delta_files: int
    average_similarity: float
    storage_savings: float


def infer_file_type(file_path: str | PathLike[str]) -> str:
    """Return the lower-case extension of ``file_path``, or ``"unknown"``."""
    name = Path(file_path).name
    dot = name.rfind(".")
    if dot <= 0:
        return "unknown"
    return name[dot + 1 :].lower()


def _byte_similarity(data1: bytes, data2: bytes) -> float:
    max_len = max(len(data1), len(data2))
    if max_len == 0:
        return 1.0
    matches = sum(1 for a, b in zip(data1, data2) if a == b)
    return matches / max_len


class DeltaStorage:
    """Holds base files and builds deltas of similar data against them."""

    def __init__(self, similarity_threshold: float, delta_algorithm: DeltaAlgorithm) -> None:
        self.similarity_threshold = similarity_threshold
        self.delta_algorithm = delta_algorithm
        self._base_files: dict[str, bytes] = {}
        self._base_file_info: dict[str, BaseFileInfo] = {}

    def calculate_similarity(self, data1: bytes, data2: bytes) -> float:
        """Return a similarity score between 0.0 and 1.0."""
        if not data1 and not data2:
            return 1.0
        if not data1 or not data2:
            return 0.0
        if len(data1) <= 16 or len(data2) <= 16:
            return _byte_similarity(data1, data2)

        window = min(8, min(len(data1), len(data2)) // 4)
        if window == 0:
            return _byte_similarity(data1, data2)

        windows2 = {data2[j : j + window] for j in range(len(data2) - window + 1)}
        total = len(data1) - window + 1
        # A partial window match never reaches a whole window, so it adds nothing.
        matches = sum(
            1 for i in range(total) if data1[i : i + window] in windows2
        )
        return matches / total if total else 0.0

    def find_best_base(self, data: bytes, file_type: str) -> SimilarityMatch | None:
        """Return the most similar base file at or above the threshold."""
        best: SimilarityMatch | None = None
        best_similarity = 0.0
        for base_id, base_data in self._base_files.items():
            info = self._base_file_info.get(base_id)
            if info is None:
                continue
            bonus = 0.1 if info.file_type == file_type else 0.0
            similarity = self.calculate_similarity(data, base_data) + bonus
            if similarity > best_similarity and similarity >= self.similarity_threshold:
                best_similarity = similarity
                best = SimilarityMatch(
                    base_storage_id=base_id,
                    similarity_score=similarity,
                    estimated_compression=1.0 - (1.0 - similarity) * 0.8,
                )
        return best

    def create_delta(self, base_data: bytes, target_data: bytes) -> bytes:
        """Encode ``target_data`` as a delta against ``base_data``."""
        if self.delta_algorithm is DeltaAlgorithm.SIMPLE:
            return self._create_simple_delta(base_data, target_data)
        if self.delta_algorithm is DeltaAlgorithm.XDELTA:
            raise DeltaError("XDelta algorithm is not supported")
        raise DeltaError("BsDiff algorithm is not supported")

    @staticmethod
    def _create_simple_delta(base_data: bytes, target_data: bytes) -> bytes:
        out = bytearray(DELTA_MAGIC)
        out += _HEADER.pack(len(base_data), len(target_data))
        base_len = len(base_data)
        target_len = len(target_data)

        def same(pos: int) -> bool:
            return pos < base_len and target_data[pos] == base_data[pos]

        i = 0
        while i < target_len:
            start = i
            if same(i):
                while i < target_len and same(i):
                    i += 1
                out.append(COPY)
                out += _LENGTH.pack(i - start)
            else:
                while i < target_len and not same(i):
                    i += 1
                out.append(INSERT)
                out += _LENGTH.pack(i - start)
                out += target_data[start:i]
        return bytes(out)

    def apply_delta(self, base_data: bytes, delta_data: bytes) -> bytes:
        """Rebuild the target data from ``base_data`` and a delta."""
        if len(delta_data) < 22:
            raise DeltaError("Invalid delta data: too short")
        if delta_data[: len(DELTA_MAGIC)] != DELTA_MAGIC:
            raise DeltaError("Invalid delta data: wrong header")
        if len(delta_data) < _HEADER_SIZE:
            raise DeltaError("Invalid target length")
        base_len, target_len = _HEADER.unpack_from(delta_data, len(DELTA_MAGIC))
        if len(base_data) != base_len:
            raise DeltaError("Base data length mismatch")

        result = bytearray()
        pos = _HEADER_SIZE
        base_pos = 0
        end = len(delta_data)
        while pos < end:
            command = delta_data[pos]
            pos += 1
            if command == COPY:
                if pos + 4 > end:
                    raise DeltaError("Invalid COPY command")
                (length,) = _LENGTH.unpack_from(delta_data, pos)
                pos += 4
                if base_pos + length > len(base_data):
                    raise DeltaError("COPY command out of bounds")
                result += base_data[base_pos : base_pos + length]
                base_pos += length
            elif command == INSERT:
                if pos + 4 > end:
                    raise DeltaError("Invalid INSERT command")
                (length,) = _LENGTH.unpack_from(delta_data, pos)
                pos += 4
                if pos + length > end:
                    raise DeltaError("INSERT command out of bounds")
                result += delta_data[pos : pos + length]
                pos += length
            else:
                raise DeltaError(f"Unknown delta command: {command}")

        if len(result) != target_len:
            raise DeltaError("Reconstructed file size mismatch")
        return bytes(result)

    def add_base_file(self, storage_id: str, data: bytes, file_type: str) -> None:
        """Register ``data`` as a base file."""
        self._base_files[storage_id] = bytes(data)
        self._base_file_info[storage_id] = BaseFileInfo(
            size=len(data), file_type=file_type, created_at=int(time.time())
        )

    def remove_base_file(self, storage_id: str) -> bool:
        """Remove a base file unless it is still referenced; return whether it went."""
        info = self._base_file_info.get(storage_id)
        if info is None:
            self._base_files.pop(storage_id, None)
            return True
        if info.reference_count:
            return False
        self._base_files.pop(storage_id, None)
        del self._base_file_info[storage_id]
        return True

    def increment_reference(self, storage_id: str) -> None:
        info = self._base_file_info.get(storage_id)
        if info is not None:
            info.reference_count += 1

    def decrement_reference(self, storage_id: str) -> bool:
        """Drop one reference; return True when no references are left."""
        info = self._base_file_info.get(storage_id)
        if info is None:
            return True
        if info.reference_count > 0:
            info.reference_count -= 1
        return info.reference_count == 0

    def get_base_file_data(self, storage_id: str) -> bytes | None:
        return self._base_files.get(storage_id)

    def get_stats(self) -> DeltaStats:
        return DeltaStats(
            total_base_files=len(self._base_files),
            total_delta_files=sum(i.reference_count for i in self._base_file_info.values()),
            average_similarity=0.0,
            storage_savings=0.0,
        )