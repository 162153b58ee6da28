import struct


def read_u8(data, offset=0):
    return data[offset]

def read_u16(data, offset=0):
    return struct.unpack('<H', data[offset:offset+2])[0]

def read_u32(data, offset=0):
    return struct.unpack('<I', data[offset:offset+4])[0]

def read_u16_be(data, offset=0):
    return struct.unpack('>H', data[offset:offset+2])[0]

def read_u32_be(data, offset=0):
    return struct.unpack('>I', data[offset:offset+4])[0]

def pack_u16(val):
    return struct.pack('<H', val)

def pack_u32(val):
    return struct.pack('<I', val)


def read_words(data, offset=0, count=None):
    """Unpack little-endian u16 words from ``data[offset:]``.

    A trailing odd byte is ignored.
    """
    if count is None:
        count = (len(data) - offset) // 2
    if offset + count * 2 > len(data):
        raise ValueError(
            f"need {count * 2} bytes at 0x{offset:X}, only {len(data) - offset} available")
    return list(struct.unpack(f'<{count}H', data[offset:offset + count * 2]))

def pack_words(words):
    return struct.pack(f'<{len(words)}H', *words)


def psx_to_rgba(val):
    """
    PSX 15-bit color: R = bits 0-4, G = bits 5-9, B = bits 10-14, bit 15 unused.
    Returns (R, G, B, A) in 0-255 range. Color 0 is fully transparent, every
    other value is fully opaque.
    """
    if val == 0:
        return (0, 0, 0, 0)
    r = (val & 0x001F) << 3
    g = ((val & 0x03E0) >> 5) << 3
    b = ((val & 0x7C00) >> 10) << 3
    return (r, g, b, 255)

def rgba_to_psx(r, g, b, a=255):
    """Inverse of psx_to_rgba. Alpha 0 always gives color 0."""
    if a == 0:
        return 0
    return ((r >> 3) & 0x1F) | (((g >> 3) & 0x1F) << 5) | (((b >> 3) & 0x1F) << 10)


def bcd_to_int(val):
    return ((val >> 4) & 0x0F) * 10 + (val & 0x0F)

def int_to_bcd(val):
    if not 0 <= val <= 99:
        raise ValueError(f"value {val} does not fit in one BCD byte")
    return ((val // 10) << 4) | (val % 10)

def is_valid_bcd(val):
    return (val >> 4) <= 9 and (val & 0x0F) <= 9
