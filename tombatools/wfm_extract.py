"""WFM font/dialogue extractor.

Writes one RGBA PNG per glyph (glyphs/glyph_NNNN.png) and the dialogue
table as dialogues.yaml. Glyph characters are recovered by matching the
exported PNGs pixel-for-pixel against a reference font directory whose
files are named by Unicode codepoint in hex (e.g. fonts/16/uppercase/0041.png).

Usage:
  tombatools wfm decode CFNT999H.WFM ./output/
  tombatools wfm decode --fonts ./fonts CFNT999H.WFM ./output/
"""

import hashlib
import os
import re
from pathlib import Path

import numpy as np
import yaml
from PIL import Image

from tombatools.common.tiles import PSXTile
from tombatools.wfm_format import WFMDecoder, palette_for_height, parse_special_dialogues
from tombatools.wfm_text import decode_dialogue, content_to_yaml

GLYPHS_DIR = 'glyphs'
DIALOGUES_FILE = 'dialogues.yaml'
GLYPH_NAME_RE = re.compile(r'glyph_(\d+)\.png$', re.IGNORECASE)


def glyph_image(glyph):
    palette = palette_for_height(glyph.height)
    return PSXTile(glyph.width, glyph.height, palette, glyph.image).to_image()


def image_hash(path):
    """SHA-256 over premultiplied 16-bit RGBA pixel values, row by row."""
    with Image.open(path) as img:
        rgba = np.asarray(img.convert('RGBA'), dtype=np.uint32)
    c16 = rgba * 0x101
    alpha = c16[..., 3:4]
    premul = np.concatenate([c16[..., :3] * alpha // 0xFFFF, alpha], axis=-1)
    return hashlib.sha256(premul.astype('<u2').tobytes()).hexdigest()


def font_char_name(path):
    stem = Path(path).stem
    try:
        return chr(int(stem, 16))
    except (ValueError, OverflowError):
        return stem


class WFMExporter:
    def __init__(self, fonts_dir='fonts', verbose=False):
        self.fonts_dir = fonts_dir
        self.verbose = verbose

    def export_glyphs(self, wfm, output_dir):
        glyphs_dir = os.path.join(output_dir, GLYPHS_DIR)
        os.makedirs(glyphs_dir, exist_ok=True)

        if len(wfm.glyphs) != wfm.header.total_glyphs:
            raise ValueError(f"glyph count mismatch: header says {wfm.header.total_glyphs}, "
                             f"decoded {len(wfm.glyphs)}")

        exported = 0
        for i, glyph in enumerate(wfm.glyphs):
            if glyph.is_empty:
                if self.verbose:
                    print(f"  -- glyph {i:04d} empty, skipped")
                continue
            name = f"glyph_{i:04d}.png"
            glyph_image(glyph).save(os.path.join(glyphs_dir, name))
            exported += 1
            if self.verbose:
                print(f"  Glyph {i:04d}: {glyph.width}x{glyph.height} clut=0x{glyph.clut:04X} -> {name}")
        print(f"Exported {exported} glyphs to {glyphs_dir}")
        return exported

    def build_glyph_mapping(self, glyphs_dir, glyph_count=None):
        """Map glyph index -> character by hashing exported glyphs against the font directory.

        With ``glyph_count`` set, files left over from a larger font are ignored.
        """
        if not os.path.isdir(self.fonts_dir):
            raise FileNotFoundError(f"font directory '{self.fonts_dir}' does not exist")

        font_hashes = {}
        for path in sorted(Path(self.fonts_dir).rglob('*')):
            if path.suffix.lower() != '.png' or not path.is_file():
                continue
            font_hashes[image_hash(path)] = font_char_name(path)

        mapping = {}
        for name in sorted(os.listdir(glyphs_dir)):
            m = GLYPH_NAME_RE.match(name)
            if not m:
                continue
            index = int(m.group(1))
            if glyph_count is not None and index >= glyph_count:
                continue
            char = font_hashes.get(image_hash(os.path.join(glyphs_dir, name)))
            if char is not None:
                mapping[index] = char
                if self.verbose:
                    print(f"  Glyph {index:04d} -> {char!r}")
        print(f"Glyph mapping: {len(mapping)} glyphs matched against {len(font_hashes)} font images")
        return mapping

    def export_dialogues(self, wfm, output_dir, glyph_mapping=None):
        total = wfm.header.total_dialogues
        if len(wfm.dialogues) != total:
            raise ValueError(f"dialogue count mismatch: header says {total}, decoded {len(wfm.dialogues)}")

        special = set(parse_special_dialogues(wfm.header.reserved, total, self.verbose))

        entries = []
        for i, stream in enumerate(wfm.dialogues):
            decoded = decode_dialogue(stream, glyph_mapping, wfm.glyphs)
            entries.append({
                'id': i,
                'type': decoded.type,
                'font_height': decoded.font_height,
                'font_clut': decoded.font_clut,
                'terminator': decoded.terminator,
                'special': i in special,
                'content': [content_to_yaml(item) for item in decoded.content],
            })

        doc = {
            'total_dialogues': total,
            'original_size': wfm.original_size,
            'dialogues': entries,
        }
        path = os.path.join(output_dir, DIALOGUES_FILE)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(doc, f, sort_keys=False, allow_unicode=True, indent=2,
                           default_flow_style=False)
        print(f"Exported {len(entries)} dialogues to {path}")
        return doc


class WFMConverter:
    """Decode a WFM file and hand it to an exporter."""

    def __init__(self, decoder=None, exporter=None):
        self.decoder = decoder or WFMDecoder()
        self.exporter = exporter or WFMExporter()

    def process(self, input_path, output_dir):
        with open(input_path, 'rb') as f:
            data = f.read()
        wfm = self.decoder.decode(data)
        os.makedirs(output_dir, exist_ok=True)

        self.exporter.export_glyphs(wfm, output_dir)
        try:
            mapping = self.exporter.build_glyph_mapping(os.path.join(output_dir, GLYPHS_DIR),
                                                       len(wfm.glyphs))
        except FileNotFoundError as e:
            print(f"Warning: {e}")
            print("Warning: dialogues will be exported without character decoding")
            mapping = {}
        self.exporter.export_dialogues(wfm, output_dir, mapping)
        return wfm
