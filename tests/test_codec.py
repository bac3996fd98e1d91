import pytest

from stowr.codec import (
    algorithm_for_path,
    compress_bytes,
    compress_to_file,
    decompress_bytes,
    decompress_file,
    read_compressed,
)
from stowr.config import CompressionAlgorithm, StowrError

ALGORITHMS = list(CompressionAlgorithm)

PAYLOADS = [
    b"Hello, Stowr!",
    b"a" * 10000,
    bytes(range(256)) * 7,
    "multi-byte text: \u00e9\u00e8\u4e2d\u6587".encode("utf-8"),
]


@pytest.mark.parametrize("algorithm", ALGORITHMS)
@pytest.mark.parametrize("data", PAYLOADS)
def test_round_trip(algorithm, data):
    packed = compress_bytes(data, algorithm, algorithm.default_level())
    assert decompress_bytes(packed, algorithm) == data


@pytest.mark.parametrize("algorithm", [CompressionAlgorithm.GZIP, CompressionAlgorithm.ZSTD])
def test_round_trip_empty(algorithm):
    packed = compress_bytes(b"", algorithm, algorithm.default_level())
    assert decompress_bytes(packed, algorithm) == b""


def test_gzip_has_gzip_magic():
    packed = compress_bytes(b"data", CompressionAlgorithm.GZIP, 6)
    assert packed[:2] == b"\x1f\x8b"


def test_zstd_has_frame_magic():
    packed = compress_bytes(b"data", CompressionAlgorithm.ZSTD, 3)
    assert packed[:4] == b"\x28\xb5\x2f\xfd"


def test_lz4_prepends_size():
    data = b"Hello, Stowr! " * 20
    packed = compress_bytes(data, CompressionAlgorithm.LZ4, 0)
    assert packed[:4] == len(data).to_bytes(4, "little")


def test_repetitive_data_shrinks():
    data = b"a" * 10000
    for algorithm in ALGORITHMS:
        assert len(compress_bytes(data, algorithm, algorithm.default_level())) < len(data)


def test_gzip_level_out_of_range():
    with pytest.raises(StowrError):
        compress_bytes(b"x", CompressionAlgorithm.GZIP, 10)


@pytest.mark.parametrize("level", [0, 1, 9])
def test_gzip_levels_round_trip(level):
    data = b"level test " * 50
    packed = compress_bytes(data, CompressionAlgorithm.GZIP, level)
    assert decompress_bytes(packed, CompressionAlgorithm.GZIP) == data


def test_zstd_concatenated_frames():
    first = compress_bytes(b"first-", CompressionAlgorithm.ZSTD, 3)
    second = compress_bytes(b"second", CompressionAlgorithm.ZSTD, 3)
    assert decompress_bytes(first + second, CompressionAlgorithm.ZSTD) == b"first-second"


@pytest.mark.parametrize("algorithm", ALGORITHMS)
def test_garbage_raises(algorithm):
    with pytest.raises(StowrError):
        decompress_bytes(b"\xff\xff\xff\x7fnot compressed at all", algorithm)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("abc.gz", CompressionAlgorithm.GZIP),
        ("abc.zst", CompressionAlgorithm.ZSTD),
        ("dir/abc.lz4", CompressionAlgorithm.LZ4),
    ],
)
def test_algorithm_for_path(name, expected):
    assert algorithm_for_path(name) is expected


@pytest.mark.parametrize("name", ["abc.txt", "abc.GZ", "abc."])
def test_algorithm_for_path_unsupported(name):
    with pytest.raises(StowrError, match="Unsupported file extension"):
        algorithm_for_path(name)


@pytest.mark.parametrize("name", ["abc", ".gz"])
def test_algorithm_for_path_no_extension(name):
    with pytest.raises(StowrError, match="No file extension found"):
        algorithm_for_path(name)


@pytest.mark.parametrize("algorithm", ALGORITHMS)
def test_file_round_trip(tmp_path, algorithm):
    data = b"file content " * 100
    stored = tmp_path / f"stored.{algorithm.file_extension()}"
    size = compress_to_file(data, stored, algorithm, algorithm.default_level())
    assert size == stored.stat().st_size

    output = tmp_path / "a" / "b" / "out.txt"
    decompress_file(stored, output)
    assert output.read_bytes() == data


@pytest.mark.parametrize("algorithm", ALGORITHMS)
def test_read_compressed(tmp_path, algorithm):
    data = b"read me back"
    stored = tmp_path / "blob.bin"
    compress_to_file(data, stored, algorithm, algorithm.default_level())
    assert read_compressed(stored, algorithm) == data


def test_read_compressed_missing_file(tmp_path):
    with pytest.raises(StowrError, match="Failed to read stored file"):
        read_compressed(tmp_path / "missing.gz", CompressionAlgorithm.GZIP)


def test_decompress_file_unsupported_extension(tmp_path):
    source = tmp_path / "stored.bin"
    source.write_bytes(b"whatever")
    with pytest.raises(StowrError, match="Unsupported file extension"):
        decompress_file(source, tmp_path / "out")
    assert not (tmp_path / "out").exists()


def test_decompress_file_missing_input(tmp_path):
    with pytest.raises(StowrError):
        decompress_file(tmp_path / "missing.zst", tmp_path / "out")


def test_decompress_file_corrupt_gzip(tmp_path):
    source = tmp_path / "broken.gz"
    source.write_bytes(b"this is not gzip data")
    with pytest.raises(StowrError):
        decompress_file(source, tmp_path / "out.txt")