import random

import pytest

from promxy.snappy import SnappyError, compress, decompress


def _random_bytes(size, seed=7):
    return random.Random(seed).randbytes(size)


def test_empty_input():
    assert compress(b"") == b"\x00"
    assert decompress(b"\x00") == b""


def test_short_input_is_a_single_literal():
    assert compress(b"a") == b"\x01\x00a"


def test_overlapping_copy_decodes():
    assert decompress(b"\x05\x00a\x01\x01") == b"aaaaa"


@pytest.mark.parametrize(
    "data",
    [
        b"hello",
        b"a" * 20,
        b"abcdefgh" * 500,
        b"The quick brown fox jumps over the lazy dog. " * 40,
        _random_bytes(100),
        _random_bytes(300),
        _random_bytes(70000),
        _random_bytes(3000) + b"x" * 5000 + _random_bytes(3000, seed=1) + _random_bytes(3000),
        bytes(range(256)) * 600,
    ],
)
def test_round_trip(data):
    assert decompress(compress(data)) == data


def test_repetitive_data_shrinks():
    data = b"a" * 10000
    assert len(compress(data)) < len(data) // 10


def test_far_repeat_round_trip():
    chunk = _random_bytes(4000, seed=3)
    data = chunk + _random_bytes(3000, seed=4) + chunk
    compressed = compress(data)
    assert decompress(compressed) == data
    assert len(compressed) < len(data)


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\x80",
        b"\x05\x00a",
        b"\x04\x01\x00",
        b"\x02\x04a",
        b"\x01\x00ab",
        b"\x01\x00a\x01\x01",
    ],
)
def test_corrupt_input_raises(data):
    with pytest.raises(SnappyError):
        decompress(data)


def test_snappy_error_is_value_error():
    with pytest.raises(ValueError):
        decompress(b"\x03\x00a")