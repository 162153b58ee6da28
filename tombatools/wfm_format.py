"""WFM font/dialogue container for Tomba!.

WFM format (all little-endian):
  Offset 0x00: char[4]  "WFM3"
  Offset 0x04: u32      padding
  Offset 0x08: u32      dialogue pointer table offset (from file start)
  Offset 0x0C: u16      total dialogues
  Offset 0x0E: u16      total glyphs
  Offset 0x10: u8[128]  reserved (special dialogue IDs, u16 slots)
  Offset 0x90: u16[total_glyphs] glyph pointers (from file start)
  ...          glyph records, 2-byte aligned:
                 u16 clut, u16 height, u16 width, u16 handakuten,
                 u8[(width*height+1)//2] 4bpp image
  table:       u16[total_dialogues] dialogue pointers (relative to the table)
  ...          dialogue word streams, each ending in 0xFFFE or 0xFFFF

A null dialogue pointer means an empty dialogue.
"""

import struct
from typing import List, NamedTuple

from tombatools.common.psx import read_u16, read_u32, pack_u16, pack_u32
from tombatools.common.tiles import PSXPalette, image_size_4bpp

WFM_MAGIC = b'WFM3'
HEADER_SIZE = 0x90
RESERVED_SIZE = 128
MAX_SPECIAL_DIALOGUES = RESERVED_SIZE // 2
GLYPH_HEADER_SIZE = 8
MAX_GLYPH_IMAGE = 10000

# Dialogue stream control codes
FFF2 = 0xFFF2
HALT = 0xFFF3
F4 = 0xFFF4
PROMPT = 0xFFF5
F6 = 0xFFF6
CHANGE_COLOR_TO = 0xFFF7
INIT_TAIL = 0xFFF8
PAUSE_FOR = 0xFFF9
INIT_TEXT_BOX = 0xFFFA
DOUBLE_NEWLINE = 0xFFFB
WAIT_FOR_INPUT = 0xFFFC
NEWLINE = 0xFFFD
TERMINATOR_1 = 0xFFFE
TERMINATOR_2 = 0xFFFF
C04D = 0xC04D
C04E = 0xC04E

GLYPH_ID_BASE = 0x8000
GLYPH_ID_MAX = 0xFFF1
TERMINATORS = (TERMINATOR_1, TERMINATOR_2)

DIALOGUE_CLUT = [
    0x0000, 0x0400, 0x4E73, 0x2529, 0x35AD, 0x4210, 0x14A5, 0x7E4D,
    0x03E0, 0x421F, 0x297F, 0x5319, 0x4674, 0x3A11, 0x0000, 0x0000,
]
EVENT_CLUT = [
    0x01FF, 0x8400, 0x7FFF, 0x3DEF, 0x2529, 0x56B5, 0x00F0, 0x0198,
    0x6739, 0x0134, 0x01FF, 0x7C00, 0x7C00, 0x7C00, 0x7C00, 0x7C00,
]
EVENT_FONT_HEIGHT = 24


def palette_for_height(height):
    return PSXPalette(EVENT_CLUT if height == EVENT_FONT_HEIGHT else DIALOGUE_CLUT)


def align2(value):
    return (value + 1) & ~1


class WFMHeader(NamedTuple):
    magic: bytes
    padding: int
    dialogue_table: int
    total_dialogues: int
    total_glyphs: int
    reserved: bytes

    def pack(self):
        if len(self.reserved) != RESERVED_SIZE:
            raise ValueError(f"reserved section must be {RESERVED_SIZE} bytes, got {len(self.reserved)}")
        return (self.magic + pack_u32(self.padding) + pack_u32(self.dialogue_table)
                + pack_u16(self.total_dialogues) + pack_u16(self.total_glyphs) + self.reserved)


class Glyph(NamedTuple):
    clut: int
    height: int
    width: int
    handakuten: int
    image: bytes

    @property
    def is_empty(self):
        return not self.image or self.width == 0 or self.height == 0

    def pack(self):
        return struct.pack('<4H', self.clut, self.height, self.width, self.handakuten) + self.image


EMPTY_GLYPH = Glyph(0, 0, 0, 0, b'')


class WFMFile(NamedTuple):
    header: WFMHeader
    glyph_pointers: List[int]
    glyphs: List[Glyph]
    dialogue_pointers: List[int]
    dialogues: List[bytes]
    original_size: int


class WFMDecoder:
    """Parses a WFM file held in memory.

    Header and pointer-table damage is fatal. A glyph that can't be read is
    replaced with an empty glyph so the rest of the font still decodes.
    """

    def __init__(self, verbose=False):
        self.verbose = verbose

    def decode(self, data):
        header = self.decode_header(data)
        glyph_pointers, glyphs = self.decode_glyphs(data, header)
        dialogue_pointers, dialogues = self.decode_dialogues(data, header)
        return WFMFile(header, glyph_pointers, glyphs, dialogue_pointers, dialogues, len(data))

    def decode_header(self, data):
        if len(data) < HEADER_SIZE:
            raise ValueError(f"WFM file too small: {len(data)} bytes (need at least {HEADER_SIZE})")
        magic = bytes(data[0:4])
        if magic != WFM_MAGIC:
            raise ValueError(f"Bad WFM magic: expected {WFM_MAGIC!r}, got {magic!r}")
        header = WFMHeader(
            magic=magic,
            padding=read_u32(data, 4),
            dialogue_table=read_u32(data, 8),
            total_dialogues=read_u16(data, 12),
            total_glyphs=read_u16(data, 14),
            reserved=bytes(data[16:16 + RESERVED_SIZE]),
        )
        if self.verbose:
            print(f"  Header: {header.total_glyphs} glyphs, {header.total_dialogues} dialogues, "
                  f"dialogue table at 0x{header.dialogue_table:X}")
        return header

    def decode_glyphs(self, data, header):
        table_end = HEADER_SIZE + header.total_glyphs * 2
        if table_end > len(data):
            raise ValueError(
                f"Glyph pointer table truncated: {header.total_glyphs} pointers need "
                f"0x{table_end:X} bytes, file has 0x{len(data):X}")
        pointers = [read_u16(data, HEADER_SIZE + i * 2) for i in range(header.total_glyphs)]

        glyphs = []
        pos = table_end
        for i in range(header.total_glyphs):
            glyph, pos = self._read_glyph(data, pos)
            if glyph is None:
                print(f"Warning: glyph {i} unreadable at 0x{pos:X}, using an empty glyph")
                glyph = EMPTY_GLYPH
            elif self.verbose:
                print(f"  Glyph {i:04d}: {glyph.width}x{glyph.height} clut=0x{glyph.clut:04X} "
                      f"handakuten={glyph.handakuten}")
            glyphs.append(glyph)
        return pointers, glyphs

    def _read_glyph(self, data, pos):
        if pos + GLYPH_HEADER_SIZE > len(data):
            return None, pos
        clut, height, width, handakuten = struct.unpack('<4H', data[pos:pos + GLYPH_HEADER_SIZE])
        pos += GLYPH_HEADER_SIZE
        if width == 0 or height == 0:
            return Glyph(clut, height, width, handakuten, b''), pos
        size = image_size_4bpp(width, height)
        if size >= MAX_GLYPH_IMAGE:
            return Glyph(clut, height, width, handakuten, b''), pos
        if pos + size > len(data):
            return None, pos
        image = bytes(data[pos:pos + size])
        return Glyph(clut, height, width, handakuten, image), align2(pos + size)

    def decode_dialogues(self, data, header):
        base = header.dialogue_table
        table_end = base + header.total_dialogues * 2
        if table_end > len(data):
            raise ValueError(
                f"Dialogue pointer table at 0x{base:X} truncated: {header.total_dialogues} "
                f"pointers need 0x{table_end:X} bytes, file has 0x{len(data):X}")
        pointers = [read_u16(data, base + i * 2) for i in range(header.total_dialogues)]

        dialogues = []
        for i, pointer in enumerate(pointers):
            if pointer == 0:
                dialogues.append(b'')
                continue
            dialogues.append(self._read_stream(data, base + pointer, i))
        return pointers, dialogues

    def _read_stream(self, data, pos, index):
        start = pos
        while pos + 2 <= len(data):
            word = read_u16(data, pos)
            pos += 2
            if word in TERMINATORS:
                return bytes(data[start:pos])
        if self.verbose:
            print(f"  Dialogue {index}: no terminator before end of file (0x{start:X})")
        return bytes(data[start:pos])


def parse_special_dialogues(reserved, total_dialogues, verbose=False):
    """Special dialogue IDs packed in the reserved header section.

    Dialogue 0 is special only when the first slot is 0 and something
    non-zero follows; an all-zero section means none.
    """
    if not any(reserved):
        if verbose:
            print("  No special dialogues in reserved section")
        return []

    ids = []
    if read_u16(reserved, 0) == 0 and any(reserved[2:]):
        ids.append(0)

    for off in range(0, len(reserved) - 1, 2):
        dialogue_id = read_u16(reserved, off)
        if dialogue_id == 0:
            continue
        if dialogue_id < total_dialogues:
            ids.append(dialogue_id)
        else:
            print(f"Warning: special dialogue ID {dialogue_id} out of range (max {total_dialogues - 1}), ignored")
    if verbose:
        print(f"  Special dialogues: {ids}")
    return ids


def build_reserved_section(special_ids):
    """Pack sorted special dialogue IDs into the 128-byte reserved section."""
    ids = sorted(special_ids)
    if len(ids) > MAX_SPECIAL_DIALOGUES:
        print(f"Warning: {len(ids)} special dialogues, only the first {MAX_SPECIAL_DIALOGUES} fit")
        ids = ids[:MAX_SPECIAL_DIALOGUES]
    reserved = bytearray(RESERVED_SIZE)
    for i, dialogue_id in enumerate(ids):
        struct.pack_into('<H', reserved, i * 2, dialogue_id)
    return bytes(reserved)


def build_wfm(glyphs, dialogues, reserved=bytes(RESERVED_SIZE), original_size=0, verbose=False):
    """Serialize glyph records and dialogue streams into WFM bytes.

    ``dialogues`` are complete word streams (terminator included); an empty
    stream gets a null pointer. When the result is smaller than
    ``original_size`` it is padded with 0xFF.
    """
    glyph_table_end = HEADER_SIZE + len(glyphs) * 2
    glyph_blob = bytearray()
    glyph_pointers = []
    for glyph in glyphs:
        glyph_pointers.append((glyph_table_end + len(glyph_blob)) & 0xFFFF)
        glyph_blob += glyph.pack()
        if len(glyph_blob) % 2:
            glyph_blob.append(0)

    dialogue_table = align2(glyph_table_end + len(glyph_blob))

    dialogue_pointers = []
    dialogue_blob = bytearray()
    rel = len(dialogues) * 2
    for i, stream in enumerate(dialogues):
        if not stream:
            dialogue_pointers.append(0)
            continue
        if rel > 0xFFFF:
            raise ValueError(f"Dialogue {i} starts 0x{rel:X} bytes past the dialogue table, beyond u16 range")
        dialogue_pointers.append(rel)
        dialogue_blob += stream
        if len(stream) % 2:
            dialogue_blob.append(0)
        rel += align2(len(stream))

    header = WFMHeader(WFM_MAGIC, 0, dialogue_table, len(dialogues), len(glyphs), bytes(reserved))

    out = bytearray(header.pack())
    for ptr in glyph_pointers:
        out += pack_u16(ptr)
    out += glyph_blob
    out += bytes(dialogue_table - len(out))
    for ptr in dialogue_pointers:
        out += pack_u16(ptr)
    out += dialogue_blob

    if original_size and len(out) < original_size:
        pad = original_size - len(out)
        out += b'\xFF' * pad
        if verbose:
            print(f"  Added {pad} bytes of 0xFF padding to keep original size ({original_size} bytes)")
    elif original_size and len(out) > original_size:
        print(f"Warning: encoded file is {len(out)} bytes, larger than original {original_size} bytes")
    return bytes(out)
