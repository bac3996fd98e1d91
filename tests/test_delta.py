import struct

import pytest

from stowr.config import DeltaAlgorithm, StowrError
from stowr.delta import DeltaError, DeltaStorage, infer_file_type


@pytest.fixture
def store():
    return DeltaStorage(0.7, DeltaAlgorithm.SIMPLE)


def test_identical_similarity(store):
    assert abs(store.calculate_similarity(b"Hello World", b"Hello World") - 1.0) < 0.1


def test_partial_similarity_in_range(store):
    score = store.calculate_similarity(b"Hello World", b"Hello Rust")
    assert 0.0 <= score <= 1.0


def test_similar_texts_positive(store):
    assert store.calculate_similarity(b"Hello World Test", b"Hello World Best") > 0.0


def test_different_data_zero(store):
    assert store.calculate_similarity(b"AAAAAAAAAA", b"BBBBBBBBBB") == 0.0


def test_empty_inputs(store):
    assert store.calculate_similarity(b"", b"") == 1.0
    assert store.calculate_similarity(b"", b"abc") == 0.0


def test_long_data_windows(store):
    data = bytes(range(40))
    assert store.calculate_similarity(data, data) == 1.0
    assert store.calculate_similarity(b"A" * 40, b"B" * 40) == 0.0


def test_simple_delta_round_trip(store):
    base = b"Hello World"
    target = b"Hello Rust World"
    delta = store.create_delta(base, target)
    assert store.apply_delta(base, delta) == target


def test_delta_layout(store):
    delta = store.create_delta(b"ab", b"ac")
    expected = (
        b"STOWR_DELTA_V1"
        + struct.pack("<QQ", 2, 2)
        + b"\x01" + struct.pack("<I", 1)
        + b"\x02" + struct.pack("<I", 1) + b"c"
    )
    assert delta == expected


def test_delta_longer_target_round_trip(store):
    base = b"short"
    target = b"shorter and longer"
    assert store.apply_delta(base, store.create_delta(base, target)) == target


@pytest.mark.parametrize("algorithm", [DeltaAlgorithm.XDELTA, DeltaAlgorithm.BSDIFF])
def test_unsupported_algorithms(algorithm):
    with pytest.raises(DeltaError):
        DeltaStorage(0.7, algorithm).create_delta(b"a", b"b")


def test_apply_too_short(store):
    with pytest.raises(DeltaError, match="too short"):
        store.apply_delta(b"", b"STOWR")


def test_apply_wrong_header(store):
    with pytest.raises(DeltaError, match="wrong header"):
        store.apply_delta(b"", b"X" * 40)


def test_apply_base_mismatch(store):
    delta = store.create_delta(b"abc", b"abd")
    with pytest.raises(DeltaError, match="mismatch"):
        store.apply_delta(b"ab", delta)


def test_apply_unknown_command(store):
    delta = b"STOWR_DELTA_V1" + struct.pack("<QQ", 0, 0) + b"\x07"
    with pytest.raises(DeltaError, match="Unknown delta command: 7"):
        store.apply_delta(b"", delta)


def test_delta_error_is_stowr_error(store):
    with pytest.raises(StowrError):
        store.apply_delta(b"", b"")


def test_file_type_inference():
    assert infer_file_type("test.txt") == "txt"
    assert infer_file_type("image.png") == "png"
    assert infer_file_type("noext") == "unknown"
    assert infer_file_type("dir/Photo.JPG") == "jpg"
    assert infer_file_type(".hidden") == "unknown"


def test_find_best_base(store):
    data = bytes(range(40))
    store.add_base_file("base1", data, "txt")
    store.add_base_file("base2", b"Z" * 40, "bin")
    match = store.find_best_base(data, "txt")
    assert match.base_storage_id == "base1"
    assert match.similarity_score > 1.0


def test_find_best_base_below_threshold(store):
    store.add_base_file("base1", b"A" * 40, "txt")
    assert store.find_best_base(b"B" * 40, "bin") is None


def test_base_file_references(store):
    store.add_base_file("b", b"data", "txt")
    assert store.get_base_file_data("b") == b"data"
    store.increment_reference("b")
    assert store.get_stats().total_delta_files == 1
    assert store.remove_base_file("b") is False
    assert store.decrement_reference("b") is True
    assert store.remove_base_file("b") is True
    assert store.get_base_file_data("b") is None
    assert store.get_stats().total_base_files == 0


def test_decrement_unknown(store):
    assert store.decrement_reference("missing") is True
    assert store.remove_base_file("missing") is True