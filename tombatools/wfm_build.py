"""WFM font/dialogue builder.

Rebuilds a WFM file from an edited dialogues.yaml:

  1. collect every (font_height, character) pair used by the dialogue text
  2. load each glyph from fonts/<height>/**/<CODEPOINT>.png and convert it to
     4bpp with the palette for that height
  3. assign glyph IDs from 0x8000 in (height, character) order
  4. re-encode every dialogue and write header, glyph table and dialogue table

If the YAML records an original_size and the new file is smaller, the tail
is padded with 0xFF. A larger file is kept as is (with a warning).

Usage:
  tombatools wfm encode dialogues.yaml CFNT999H_modified.WFM
  tombatools wfm encode --fonts ./fonts dialogues.yaml CFNT999H_modified.WFM
"""

import os

import yaml
from PIL import Image

from tombatools.common.psx import pack_words
from tombatools.common.tiles import PSXTile
from tombatools.wfm_format import (
    Glyph, GLYPH_ID_BASE, GLYPH_ID_MAX, build_reserved_section, build_wfm,
    palette_for_height,
)
from tombatools.wfm_text import (
    Text, DOWN_ARROW, DOWN_ARROW_ALT, UNMAPPED_RE,
    content_from_yaml, encode_dialogue, text_characters,
)

# Both arrow placeholders share one font image
GLYPH_FILE_REMAP = {
    DOWN_ARROW: '2B8B.png',
    DOWN_ARROW_ALT: '2B8B.png',
}
FONT_SUBDIRS = ('lowercase', 'uppercase', 'numbers', 'symbols', 'psx')


def load_document(yaml_path):
    """Read dialogues.yaml into (entries, original_size).

    Each entry is a dict with id, type, font_height, font_clut, terminator,
    special and content (a list of content items).
    """
    with open(yaml_path, 'r', encoding='utf-8') as f:
        doc = yaml.safe_load(f)
    if not isinstance(doc, dict) or 'dialogues' not in doc:
        raise ValueError(f"{yaml_path}: missing 'dialogues' list")

    entries = []
    for raw in doc['dialogues'] or []:
        try:
            dialogue_id = int(raw['id'])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"{yaml_path}: dialogue without a valid id: {raw!r}") from e
        try:
            content = [content_from_yaml(item) for item in raw.get('content') or []]
        except ValueError as e:
            raise ValueError(f"{yaml_path}: dialogue {dialogue_id}: {e}") from e
        entries.append({
            'id': dialogue_id,
            'type': raw.get('type', 'event'),
            'font_height': int(raw.get('font_height', 8)),
            'font_clut': int(raw.get('font_clut', 0)),
            'terminator': int(raw.get('terminator', 2)),
            'special': bool(raw.get('special', False)),
            'content': content,
        })
    return entries, int(doc.get('original_size') or 0)


class WFMEncoder:
    def __init__(self, fonts_dir='fonts', verbose=False):
        self.fonts_dir = fonts_dir
        self.verbose = verbose

    def glyph_path(self, char, font_height):
        filename = GLYPH_FILE_REMAP.get(char, f"{ord(char):04X}.png")
        base = os.path.join(self.fonts_dir, str(font_height))
        candidates = [os.path.join(base, filename)]
        candidates += [os.path.join(base, sub, filename) for sub in FONT_SUBDIRS]
        for path in candidates:
            if os.path.isfile(path):
                return path
        for root, dirs, files in os.walk(base):
            dirs.sort()
            if filename in files:
                return os.path.join(root, filename)
        raise FileNotFoundError(f"no glyph image for '{char}' (U+{ord(char):04X}) under {base}")

    def load_glyph(self, char, font_height, font_clut):
        path = self.glyph_path(char, font_height)
        with Image.open(path) as img:
            tile = PSXTile.from_image(img, palette_for_height(font_height))
        return Glyph(font_clut, tile.height, tile.width, 0, bytes(tile.data))

    def collect_glyphs(self, entries):
        """Load one glyph per (font_height, char) used in the dialogue text."""
        glyph_map = {}
        missing = set()
        unmapped = set()
        for entry in entries:
            height = entry['font_height']
            for item in entry['content']:
                if not isinstance(item, Text):
                    continue
                unmapped.update(UNMAPPED_RE.findall(item.text))
                for char in text_characters(item.text):
                    key = (height, char)
                    if key in glyph_map or key in missing:
                        continue
                    try:
                        glyph_map[key] = self.load_glyph(char, height, entry['font_clut'])
                    except FileNotFoundError as e:
                        print(f"Warning: could not load glyph at font height {height}: {e}")
                        missing.add(key)

        chars = {char for _, char in glyph_map} | {char for _, char in missing}
        print(f"Unique characters: {len(chars)}")
        if unmapped:
            print(f"Unmapped glyph placeholders found: {len(unmapped)} ({', '.join(sorted(unmapped))})")
            print("Note: unmapped placeholders are dropped from the encoded text")
        return glyph_map

    def assign_ids(self, glyph_map):
        """Sequential glyph IDs from 0x8000 in (font_height, char) order."""
        keys = sorted(glyph_map)
        if GLYPH_ID_BASE + len(keys) - 1 > GLYPH_ID_MAX:
            raise ValueError(f"{len(keys)} glyphs do not fit in the glyph ID range "
                             f"0x{GLYPH_ID_BASE:04X}-0x{GLYPH_ID_MAX:04X}")
        glyph_ids = {key: GLYPH_ID_BASE + i for i, key in enumerate(keys)}
        if self.verbose:
            for (height, char), glyph_id in glyph_ids.items():
                print(f"  0x{glyph_id:04X}: '{char}' (U+{ord(char):04X}) height {height}")
        return keys, glyph_ids

    def check_ids(self, entries):
        """Dialogue IDs are table slots: duplicates are an error, gaps become empty dialogues."""
        ids = [e['id'] for e in entries]
        negative = sorted(i for i in ids if i < 0)
        if negative:
            raise ValueError(f"Negative dialogue id(s): {', '.join(map(str, negative))}")
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate dialogue id(s): {', '.join(map(str, duplicates))}")
        missing = sorted(set(range(max(ids, default=-1) + 1)) - set(ids))
        if missing:
            print(f"Warning: dialogue id(s) {', '.join(map(str, missing))} missing, "
                  f"written as empty dialogues")
        return missing

    def build(self, entries, original_size=0):
        self.check_ids(entries)
        glyph_map = self.collect_glyphs(entries)
        if self.verbose:
            for height in sorted({h for h, _ in glyph_map}):
                count = sum(1 for h, _ in glyph_map if h == height)
                print(f"  Font height {height}: {count} glyphs")
        keys, glyph_ids = self.assign_ids(glyph_map)

        by_id = {e['id']: e for e in entries}
        streams = []
        total_words = 0
        for dialogue_id in range(max(by_id, default=-1) + 1):
            entry = by_id.get(dialogue_id)
            if entry is None:
                streams.append(b'')
                continue
            words = encode_dialogue(entry['content'], entry['font_height'], glyph_ids,
                                    entry['terminator'], entry['id'])
            total_words += len(words)
            streams.append(pack_words(words))
            if self.verbose:
                preview = ' '.join(f"0x{w:04X}" for w in words[:10])
                more = f" ... (+{len(words) - 10} more)" if len(words) > 10 else ""
                print(f"  Dialogue {entry['id']}: {preview}{more}")
        print(f"Dialogues encoded: {len(streams)}, {total_words * 2} bytes of text")

        reserved = build_reserved_section([e['id'] for e in entries if e['special']])
        glyphs = [glyph_map[key] for key in keys]
        return build_wfm(glyphs, streams, reserved, original_size, self.verbose)

    def encode(self, yaml_path, output_path):
        entries, original_size = load_document(yaml_path)
        data = self.build(entries, original_size)
        with open(output_path, 'wb') as f:
            f.write(data)
        print(f"WFM file created: {output_path} ({len(data)} bytes)")
        return data
