"""Compression and decompression of stored data with gzip, zstd and lz4."""

from __future__ import annotations

import gzip
import io
import shutil
import zlib
from os import PathLike
from pathlib import Path
from typing import Union

import lz4.block
import zstandard

from stowr.config import CompressionAlgorithm, StowrError

PathArg = Union[str, "PathLike[str]"]

_EXTENSIONS = {
    "gz": CompressionAlgorithm.GZIP,
    "zst": CompressionAlgorithm.ZSTD,
    "lz4": CompressionAlgorithm.LZ4,
}

_GZIP_ERRORS = (OSError, EOFError, zlib.error)
_LZ4_ERRORS = (lz4.block.LZ4BlockError, ValueError)


def _extension(path: PathArg) -> str | None:
    name = Path(path).name
    dot = name.rfind(".")
    if dot <= 0:
        return None
    return name[dot + 1 :]


def compress_bytes(data: bytes, algorithm: CompressionAlgorithm, level: int) -> bytes:
    """Compress ``data`` with ``algorithm`` at ``level`` (ignored for lz4)."""
    if algorithm is CompressionAlgorithm.GZIP:
        if level < 0 or level > 9:
            raise StowrError("Gzip compression level must be between 0-9")
        return gzip.compress(bytes(data), compresslevel=level, mtime=0)
    if algorithm is CompressionAlgorithm.ZSTD:
        try:
            return zstandard.ZstdCompressor(level=level).compress(bytes(data))
        except zstandard.ZstdError as exc:
            raise StowrError(f"Failed to compress with zstd: {exc}") from exc
    return lz4.block.compress(bytes(data), store_size=True)


def decompress_bytes(data: bytes, algorithm: CompressionAlgorithm) -> bytes:
    """Decompress ``data`` that was compressed with ``algorithm``."""
    if algorithm is CompressionAlgorithm.GZIP:
        try:
            return gzip.decompress(bytes(data))
        except _GZIP_ERRORS as exc:
            raise StowrError(f"Failed to decompress gzip data: {exc}") from exc
    if algorithm is CompressionAlgorithm.ZSTD:
        try:
            reader = zstandard.ZstdDecompressor().stream_reader(
                io.BytesIO(bytes(data)), read_across_frames=True
            )
            with reader:
                return reader.read()
        except zstandard.ZstdError as exc:
            raise StowrError(f"Failed to decompress with zstd: {exc}") from exc
    try:
        return lz4.block.decompress(bytes(data))
    except _LZ4_ERRORS as exc:
        raise StowrError(f"Failed to decompress with lz4: {exc}") from exc


def algorithm_for_path(path: PathArg) -> CompressionAlgorithm:
    """Return the algorithm implied by the extension of a stored file."""
    ext = _extension(path)
    if ext is None:
        raise StowrError("No file extension found")
    algorithm = _EXTENSIONS.get(ext)
    if algorithm is None:
        raise StowrError(f"Unsupported file extension: {ext!r}")
    return algorithm


def compress_to_file(
    data: bytes, output_path: PathArg, algorithm: CompressionAlgorithm, level: int
) -> int:
    """Compress ``data`` into ``output_path`` and return the compressed size."""
    compressed = compress_bytes(data, algorithm, level)
    try:
        Path(output_path).write_bytes(compressed)
    except OSError as exc:
        raise StowrError("Failed to write compressed file") from exc
    return len(compressed)


def _prepare_output(output_path: Path) -> None:
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StowrError("Failed to create output directory") from exc


def decompress_file(input_path: PathArg, output_path: PathArg) -> None:
    """Decompress ``input_path`` into ``output_path``, choosing by extension."""
    algorithm = algorithm_for_path(input_path)
    source = Path(input_path)
    target = Path(output_path)

    if algorithm is CompressionAlgorithm.GZIP:
        try:
            compressed = gzip.open(source, "rb")
        except OSError as exc:
            raise StowrError("Failed to open compressed file") from exc
        with compressed:
            _prepare_output(target)
            try:
                out = target.open("wb")
            except OSError as exc:
                raise StowrError("Failed to create output file") from exc
            with out:
                try:
                    shutil.copyfileobj(compressed, out)
                except _GZIP_ERRORS as exc:
                    raise StowrError(f"Failed to decompress file: {exc}") from exc
        return

    try:
        raw = source.read_bytes()
    except OSError as exc:
        raise StowrError("Failed to read compressed file") from exc
    content = decompress_bytes(raw, algorithm)
    _prepare_output(target)
    try:
        target.write_bytes(content)
    except OSError as exc:
        raise StowrError("Failed to write decompressed file") from exc


def read_compressed(path: PathArg, algorithm: CompressionAlgorithm) -> bytes:
    """Return the decompressed content of the stored file at ``path``."""
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        raise StowrError("Failed to read stored file") from exc
    return decompress_bytes(raw, algorithm)