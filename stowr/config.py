"""Configuration for the stowr storage manager."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

CONFIG_DIR = Path(".stowr")

_UNSIGNED_RE = re.compile(r"\+?[0-9]+")


class StowrError(Exception):
    """Raised when a stowr operation cannot be carried out."""


class _NamedEnum(Enum):
    """Enum whose members carry a lower-case value and a serialised name."""

    def __new__(cls, value: str, serial_name: str):
        member = object.__new__(cls)
        member._value_ = value
        member.serial_name = serial_name
        return member

    def __str__(self) -> str:
        return self.value

    @classmethod
    def _lookup(cls, value: str, message: str):
        wanted = value.lower()
        for member in cls:
            if member.value == wanted:
                return member
        raise StowrError(message)

    @classmethod
    def from_serial(cls, name: Any):
        """Return the member stored in configuration files under ``name``."""
        for member in cls:
            if member.serial_name == name:
                return member
        raise StowrError(f"Unknown {cls.__name__} variant: {name!r}")


class CompressionAlgorithm(_NamedEnum):
    """Compression algorithm used for stored files."""

    GZIP = ("gzip", "Gzip")
    ZSTD = ("zstd", "Zstd")
    LZ4 = ("lz4", "Lz4")

    @classmethod
    def parse(cls, value: str) -> "CompressionAlgorithm":
        return cls._lookup(
            value, "Invalid compression algorithm. Valid values: gzip, zstd, lz4"
        )

    def file_extension(self) -> str:
        return {
            CompressionAlgorithm.GZIP: "gz",
            CompressionAlgorithm.ZSTD: "zst",
            CompressionAlgorithm.LZ4: "lz4",
        }[self]

    def validate_level(self, level: int) -> int:
        """Return the level to use, raising if it is out of range."""
        if self is CompressionAlgorithm.GZIP:
            if level < 0 or level > 9:
                raise StowrError("Gzip compression level must be between 0-9")
            return level
        if self is CompressionAlgorithm.ZSTD:
            if level < 1 or level > 22:
                raise StowrError("Zstd compression level must be between 1-22")
            return level
        # LZ4 has no compression levels.
        return 0

    def default_level(self) -> int:
        return {
            CompressionAlgorithm.GZIP: 6,
            CompressionAlgorithm.ZSTD: 3,
            CompressionAlgorithm.LZ4: 0,
        }[self]


class DeltaAlgorithm(_NamedEnum):
    """Algorithm used for delta storage."""

    SIMPLE = ("simple", "Simple")
    XDELTA = ("xdelta", "XDelta")
    BSDIFF = ("bsdiff", "BsDiff")

    @classmethod
    def parse(cls, value: str) -> "DeltaAlgorithm":
        return cls._lookup(
            value, "Invalid delta algorithm. Valid values: simple, xdelta, bsdiff"
        )


class IndexMode(_NamedEnum):
    """Backend used for the file index."""

    AUTO = ("auto", "Auto")
    JSON = ("json", "Json")
    SQLITE = ("sqlite", "Sqlite")

    @classmethod
    def parse(cls, value: str) -> "IndexMode":
        return cls._lookup(value, "Invalid index mode. Valid values: auto, json, sqlite")


def _parse_unsigned(value: str, bits: int) -> int:
    if not _UNSIGNED_RE.fullmatch(value):
        raise ValueError(value)
    number = int(value)
    if number >= 1 << bits:
        raise ValueError(value)
    return number


def _parse_bool(value: str) -> bool:
    if value == "true":
        return True
    if value == "false":
        return False
    raise ValueError(value)


def _parse_float(value: str) -> float:
    if value != value.strip() or "_" in value or not value:
        raise ValueError(value)
    return float(value)


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _field_int(data: dict, key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise StowrError(f"Invalid value for {key}: {value!r}")
    return value


def _field_bool(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise StowrError(f"Invalid value for {key}: {value!r}")
    return value


def _field_float(data: dict, key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise StowrError(f"Invalid value for {key}: {value!r}")
    return float(value)


@dataclass
class Config:
    """Settings for storage location, indexing and compression."""

    storage_path: Path = field(default_factory=lambda: CONFIG_DIR / "storage")
    index_mode: IndexMode = IndexMode.AUTO
    multithread: int = 1
    compression_algorithm: CompressionAlgorithm = CompressionAlgorithm.GZIP
    compression_level: int = 6
    enable_deduplication: bool = True
    enable_delta_compression: bool = False
    similarity_threshold: float = 0.7
    delta_algorithm: DeltaAlgorithm = DeltaAlgorithm.SIMPLE

    def __post_init__(self) -> None:
        self.storage_path = Path(self.storage_path)

    def to_dict(self) -> dict[str, Any]:
        """Return the configuration in its on-disk JSON form."""
        return {
            "storage_path": str(self.storage_path),
            "index_mode": self.index_mode.serial_name,
            "multithread": self.multithread,
            "compression_algorithm": self.compression_algorithm.serial_name,
            "compression_level": self.compression_level,
            "enable_deduplication": self.enable_deduplication,
            "enable_delta_compression": self.enable_delta_compression,
            "similarity_threshold": self.similarity_threshold,
            "delta_algorithm": self.delta_algorithm.serial_name,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Build a configuration from its on-disk JSON form."""
        if not isinstance(data, dict):
            raise StowrError("Config must be a JSON object")
        for required in ("storage_path", "index_mode"):
            if required not in data:
                raise StowrError(f"Missing config field: {required}")
        storage_path = data["storage_path"]
        if not isinstance(storage_path, str):
            raise StowrError(f"Invalid value for storage_path: {storage_path!r}")
        defaults = cls()
        return cls(
            storage_path=Path(storage_path),
            index_mode=IndexMode.from_serial(data["index_mode"]),
            multithread=_field_int(data, "multithread", defaults.multithread),
            compression_algorithm=CompressionAlgorithm.from_serial(
                data.get("compression_algorithm", defaults.compression_algorithm.serial_name)
            ),
            compression_level=_field_int(data, "compression_level", defaults.compression_level),
            enable_deduplication=_field_bool(
                data, "enable_deduplication", defaults.enable_deduplication
            ),
            enable_delta_compression=_field_bool(
                data, "enable_delta_compression", defaults.enable_delta_compression
            ),
            similarity_threshold=_field_float(
                data, "similarity_threshold", defaults.similarity_threshold
            ),
            delta_algorithm=DeltaAlgorithm.from_serial(
                data.get("delta_algorithm", defaults.delta_algorithm.serial_name)
            ),
        )

    @classmethod
    def load(cls) -> "Config":
        """Read the configuration file, creating a default one if it is missing."""
        path = cls.config_path()
        if not path.exists():
            config = cls()
            config.save()
            return config
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StowrError("Failed to read config file") from exc
        try:
            return cls.from_dict(json.loads(content))
        except (json.JSONDecodeError, StowrError) as exc:
            raise StowrError(f"Failed to parse config file: {exc}") from exc

    def save(self) -> None:
        """Write the configuration file and make sure the storage directory exists."""
        path = self.config_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StowrError("Failed to create config directory") from exc
        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StowrError("Failed to create storage directory") from exc
        content = json.dumps(self.to_dict(), indent=2, ensure_ascii=False)
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise StowrError("Failed to write config file") from exc

    @classmethod
    def config_path(cls) -> Path:
        return CONFIG_DIR / "config.json"

    def set(self, key: str, value: str) -> None:
        """Change one setting given by its dotted key."""
        match key:
            case "storage.path":
                self.storage_path = Path(value)
            case "index.mode":
                self.index_mode = IndexMode.parse(value)
            case "multithread":
                try:
                    threads = _parse_unsigned(value, 64)
                except ValueError:
                    raise StowrError(
                        "Invalid multithread value. Must be a positive number"
                    ) from None
                if threads == 0:
                    raise StowrError("Multithread value must be greater than 0")
                self.multithread = threads
            case "compression.algorithm":
                self.compression_algorithm = CompressionAlgorithm.parse(value)
                self.compression_level = self.compression_algorithm.default_level()
            case "compression.level":
                try:
                    level = _parse_unsigned(value, 32)
                except ValueError:
                    raise StowrError("Invalid compression level. Must be a number") from None
                if self.compression_algorithm is CompressionAlgorithm.LZ4:
                    print("Note: LZ4 does not use compression levels. Level set to 0.")
                    self.compression_level = 0
                else:
                    self.compression_level = self.compression_algorithm.validate_level(level)
            case "dedup.enable" | "delta.enable":
                try:
                    flag = _parse_bool(value)
                except ValueError:
                    raise StowrError("Invalid boolean value. Must be true or false") from None
                if key == "dedup.enable":
                    self.enable_deduplication = flag
                else:
                    self.enable_delta_compression = flag
            case "delta.similarity_threshold":
                try:
                    threshold = _parse_float(value)
                except ValueError:
                    raise StowrError(
                        "Invalid similarity threshold. Must be a number between 0.0 and 1.0"
                    ) from None
                if threshold < 0.0 or threshold > 1.0:
                    raise StowrError("Similarity threshold must be between 0.0 and 1.0")
                self.similarity_threshold = threshold
            case "delta.algorithm":
                self.delta_algorithm = DeltaAlgorithm.parse(value)
            case _:
                raise StowrError(f"Unknown config key: {key}")

    def list(self) -> list[tuple[str, str]]:
        """Return every setting as a (key, value) pair of strings."""
        return [
            ("storage.path", str(self.storage_path)),
            ("index.mode", self.index_mode.value),
            ("multithread", str(self.multithread)),
            ("compression.algorithm", str(self.compression_algorithm)),
            ("compression.level", str(self.compression_level)),
            ("dedup.enable", "true" if self.enable_deduplication else "false"),
            ("delta.enable", "true" if self.enable_delta_compression else "false"),
            ("delta.similarity_threshold", _format_float(self.similarity_threshold)),
            ("delta.algorithm", str(self.delta_algorithm)),
        ]