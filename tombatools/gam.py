#!/usr/bin/env python3
"""GAM container codec for Tomba!.

GAM files wrap game data in a small LZ variant.

GAM format:
  Offset 0x00: char[3] "GAM"
  Offset 0x03: u8      reserved
  Offset 0x04: u32 LE  uncompressed size
  Offset 0x08: LZ stream

LZ stream: a u16 LE bitmask, then up to 16 tokens, repeated. Bits are read
LSB first:
  bit 1 -> u8 offset, u8 length: copy `length` bytes starting `offset` bytes
           back from the end of the output, one byte at a time (so a copy can
           overlap itself and repeat a short pattern)
  bit 0 -> one literal byte

Decompression stops once the declared size is reached or the input runs out.
A short result is zero-padded and a long one truncated to the declared size.

Usage:
  tombatools gam unpack GAME.GAM data.UNGAM
  tombatools gam pack data.UNGAM GAME_modified.GAM
"""

import struct

GAM_MAGIC = b'GAM'
GAM_HEADER_SIZE = 8
MAX_OFFSET = 255
MAX_LENGTH = 255
MIN_MATCH = 2


def parse_gam(data):
    """Split a GAM file into (uncompressed_size, reserved, compressed_stream)."""
    if len(data) < GAM_HEADER_SIZE:
        raise ValueError(f"GAM file too small: {len(data)} bytes (need at least {GAM_HEADER_SIZE})")
    if data[0:3] != GAM_MAGIC:
        raise ValueError(f"Bad GAM magic: {data[0:3]!r}")
    reserved = data[3]
    size = struct.unpack('<I', data[4:8])[0]
    return size, reserved, data[GAM_HEADER_SIZE:]


def build_gam(raw, reserved=0):
    return GAM_MAGIC + bytes([reserved]) + struct.pack('<I', len(raw)) + compress(raw)


def decompress(data, target_size):
    out = bytearray()
    pos = 0
    n = len(data)

    while len(out) < target_size and pos < n:
        if pos + 2 > n:
            break
        mask = data[pos] | (data[pos + 1] << 8)
        pos += 2

        for bit in range(16):
            if len(out) >= target_size or pos >= n:
                break
            if mask & (1 << bit):
                if pos + 2 > n:
                    pos = n
                    break
                offset = data[pos]
                length = data[pos + 1]
                if offset > len(out) or (offset == 0 and length):
                    raise ValueError(
                        f"Corrupt LZ stream at 0x{pos:X}: offset {offset} "
                        f"with only {len(out)} bytes of output")
                pos += 2
                start = len(out) - offset
                for i in range(length):
                    if len(out) >= target_size:
                        break
                    out.append(out[start + i])
            else:
                out.append(data[pos])
                pos += 1

    if len(out) < target_size:
        out.extend(bytes(target_size - len(out)))
    return bytes(out[:target_size])


def find_best_match(data, pos):
    """Longest back-reference for data[pos:], as (offset, length).

    Scans offsets upward and keeps the first strictly longer match, so among
    equal lengths the nearest offset wins.
    """
    best_offset = 0
    best_length = 0
    limit = min(MAX_LENGTH, len(data) - pos)
    for offset in range(1, min(MAX_OFFSET, pos) + 1):
        start = pos - offset
        length = 0
        while length < limit and data[start + length % offset] == data[pos + length]:
            length += 1
        if length > best_length:
            best_offset, best_length = offset, length
            if length == limit:
                break
    return best_offset, best_length


def compress(data):
    out = bytearray()
    pos = 0
    n = len(data)

    while pos < n:
        mask = 0
        tokens = bytearray()
        for bit in range(16):
            if pos >= n:
                break
            offset, length = find_best_match(data, pos)
            if length >= MIN_MATCH:
                mask |= 1 << bit
                tokens += bytes((offset, length))
                pos += length
            else:
                tokens.append(data[pos])
                pos += 1
        out += struct.pack('<H', mask)
        out += tokens
    return bytes(out)


class GAMProcessor:
    def __init__(self, verbose=False):
        self.verbose = verbose

    def unpack(self, input_path, output_path):
        with open(input_path, 'rb') as f:
            data = f.read()
        size, reserved, stream = parse_gam(data)
        if self.verbose:
            print(f"  GAM header: size={size} reserved=0x{reserved:02X} stream={len(stream)} bytes")
        raw = decompress(stream, size)
        with open(output_path, 'wb') as f:
            f.write(raw)
        print(f"  Unpacked {len(data)} -> {len(raw)} bytes")
        return raw

    def pack(self, input_path, output_path):
        with open(input_path, 'rb') as f:
            raw = f.read()
        gam = build_gam(raw)
        with open(output_path, 'wb') as f:
            f.write(gam)
        ratio = (len(gam) / len(raw) * 100) if raw else 0.0
        print(f"  Packed {len(raw)} -> {len(gam)} bytes ({ratio:.1f}%)")
        return gam
