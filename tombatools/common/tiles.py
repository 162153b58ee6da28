"""PSX 4bpp tile codec.

A tile stores width*height palette indices packed two per byte, linear,
little-endian nibble order (even pixel = low nibble, odd pixel = high
nibble). Image byte count is always (width*height + 1) // 2.

Palettes are 16 PSX 15-bit colors. Index 0 is always rendered transparent;
fully transparent source pixels always encode to index 0.
"""

import numpy as np
from PIL import Image

from tombatools.common.psx import psx_to_rgba, rgba_to_psx

PALETTE_SIZE = 16


def image_size_4bpp(width, height):
    return (width * height + 1) // 2


def unpack_4bpp(data, count):
    """Expand packed nibbles to ``count`` indices; missing bytes read as 0."""
    raw = np.frombuffer(bytes(data), dtype=np.uint8)
    nibbles = np.zeros(max(raw.size * 2, count), dtype=np.uint8)
    nibbles[0:raw.size * 2:2] = raw & 0x0F
    nibbles[1:raw.size * 2:2] = raw >> 4
    return nibbles[:count]


def pack_4bpp(indices):
    flat = np.asarray(indices, dtype=np.uint8).ravel()
    if flat.size % 2:
        flat = np.append(flat, np.uint8(0))
    return ((flat[0::2] & 0x0F) | ((flat[1::2] & 0x0F) << 4)).astype(np.uint8).tobytes()


class PSXPalette:
    def __init__(self, colors):
        if len(colors) != PALETTE_SIZE:
            raise ValueError(f"palette needs {PALETTE_SIZE} colors, got {len(colors)}")
        self.colors = [c & 0xFFFF for c in colors]
        self.rgba = np.array([psx_to_rgba(c & 0x7FFF) for c in self.colors], dtype=np.uint8)
        self.rgba[0] = (0, 0, 0, 0)
        # Opaque pixels never match slot 0, it is always drawn transparent
        self._match_rgb = np.array([psx_to_rgba(c & 0x7FFF)[:3] for c in self.colors],
                                   dtype=np.int32)[1:]

    def color(self, index):
        if not 0 <= index < PALETTE_SIZE:
            return (0, 0, 0, 0)
        return tuple(int(v) for v in self.rgba[index])

    def closest_index(self, r, g, b, a=255):
        if a == 0:
            return 0
        target = np.array(psx_to_rgba(rgba_to_psx(r, g, b, a))[:3], dtype=np.int32)
        dist = ((self._match_rgb - target) ** 2).sum(axis=1)
        return int(dist.argmin()) + 1

    def match_pixels(self, rgba):
        """Nearest palette index for an (h, w, 4) RGBA array, by squared RGB distance."""
        arr = np.asarray(rgba, dtype=np.int32)
        rgb = (arr[..., :3] >> 3) << 3
        diff = rgb[..., None, :] - self._match_rgb[None, None, :, :]
        idx = ((diff * diff).sum(axis=-1).argmin(axis=-1) + 1).astype(np.uint8)
        idx[arr[..., 3] == 0] = 0
        return idx


class PSXTile:
    def __init__(self, width, height, palette, data=None):
        self.width = width
        self.height = height
        self.palette = palette
        size = image_size_4bpp(width, height)
        if data is None:
            data = bytes(size)
        self.data = bytearray(data)

    def _locate(self, x, y):
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"pixel ({x}, {y}) outside {self.width}x{self.height} tile")
        pixel = y * self.width + x
        if pixel // 2 >= len(self.data):
            raise IndexError(f"byte index {pixel // 2} beyond tile data")
        return pixel

    def get_pixel(self, x, y):
        pixel = self._locate(x, y)
        val = self.data[pixel // 2]
        return (val >> 4) & 0x0F if pixel & 1 else val & 0x0F

    def set_pixel(self, x, y, index):
        if not 0 <= index < PALETTE_SIZE:
            raise ValueError(f"palette index {index} out of range (max {PALETTE_SIZE - 1})")
        pixel = self._locate(x, y)
        b = pixel // 2
        if pixel & 1:
            self.data[b] = (self.data[b] & 0x0F) | (index << 4)
        else:
            self.data[b] = (self.data[b] & 0xF0) | index

    def indices(self):
        return unpack_4bpp(self.data, self.width * self.height).reshape(self.height, self.width)

    def to_image(self):
        if self.width == 0 or self.height == 0:
            raise ValueError("cannot render an empty tile")
        pixels = self.palette.rgba[self.indices()]
        return Image.fromarray(pixels)

    @classmethod
    def from_image(cls, img, palette):
        rgba = np.asarray(img.convert('RGBA'))
        height, width = rgba.shape[:2]
        return cls(width, height, palette, pack_4bpp(palette.match_pixels(rgba)))
