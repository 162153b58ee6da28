import random
import struct

import pytest

from tombatools.gam import (
    GAMProcessor, build_gam, compress, decompress, find_best_match, parse_gam,
)


def test_two_literals_are_zero_padded():
    gam = b'GAM\x00' + struct.pack('<I', 4) + bytes([0x00, 0x00, 0x41, 0x42])
    size, reserved, stream = parse_gam(gam)
    assert (size, reserved) == (4, 0)
    assert decompress(stream, size) == b'AB\x00\x00'


def test_overlapping_copy_repeats_pattern():
    # literals 'A','B' then back-reference offset 2 length 6
    stream = bytes([0b100, 0x00]) + b'AB' + bytes([2, 6])
    assert decompress(stream, 8) == b'ABABABAB'


def test_long_output_is_truncated():
    stream = bytes([0b10, 0x00]) + b'x' + bytes([1, 200])
    assert decompress(stream, 10) == b'x' * 10


def test_offset_past_output_is_an_error():
    stream = bytes([0b1, 0x00]) + bytes([3, 4])
    with pytest.raises(ValueError, match='Corrupt LZ stream'):
        decompress(stream, 4)


def test_bad_header():
    with pytest.raises(ValueError):
        parse_gam(b'GAM\x00')
    with pytest.raises(ValueError):
        parse_gam(b'XYZ\x00' + bytes(8))


def test_match_prefers_nearest_offset():
    data = b'abcabcabc'
    assert find_best_match(data, 3) == (3, 6)
    assert find_best_match(b'aaaa', 1) == (1, 3)
    assert find_best_match(b'ab', 1) == (0, 0)


@pytest.mark.parametrize('data', [
    b'',
    b'A',
    b'\x00' * 10000,
    b'Tomba! ' * 300,
    bytes(range(256)) * 4,
])
def test_round_trip(data):
    assert decompress(compress(data), len(data)) == data


def test_round_trip_random():
    rng = random.Random(1234)
    for size in (1, 17, 511, 2048):
        data = bytes(rng.choice(b'abcd\x00\xff') for _ in range(size))
        assert decompress(compress(data), len(data)) == data


def test_compression_shrinks_repetitive_data():
    data = b'\x00' * 4096
    assert len(compress(data)) < 100


def test_processor_files(tmp_path):
    raw = b'GAM payload ' * 50
    src = tmp_path / 'data.UNGAM'
    src.write_bytes(raw)
    processor = GAMProcessor()
    gam = processor.pack(str(src), str(tmp_path / 'out.GAM'))
    assert gam[:3] == b'GAM'
    assert gam == build_gam(raw)

    unpacked = processor.unpack(str(tmp_path / 'out.GAM'), str(tmp_path / 'back.UNGAM'))
    assert unpacked == raw
    assert (tmp_path / 'back.UNGAM').read_bytes() == raw
