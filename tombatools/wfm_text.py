"""Dialogue word stream <-> structured content.

A dialogue is a list of content items. Text runs carry rendered characters;
the other items stand for control codes with arguments:

  box{width,height}   INIT_TEXT_BOX  (marks the dialogue as "dialogue" type)
  tail{width,height}  INIT_TAIL
  f6{width,height}    F6
  color{value}        CHANGE_COLOR_TO
  pause{duration}     PAUSE_FOR
  fff2{value}         FFF2

Inside text, NEWLINE/DOUBLE_NEWLINE become "\\n"/"\\n\\n", C04D/C04E become
"▼"/"⏷", WAIT_FOR_INPUT becomes "⧗", HALT/F4/PROMPT become bracketed tags,
glyphs without a known character become "[XXXX]" and any other word "<XXXX>".
"""

import re
from typing import List, NamedTuple

from tombatools.common.psx import read_words
from tombatools.wfm_format import (
    FFF2, HALT, F4, PROMPT, F6, CHANGE_COLOR_TO, INIT_TAIL, PAUSE_FOR,
    INIT_TEXT_BOX, DOUBLE_NEWLINE, WAIT_FOR_INPUT, NEWLINE, TERMINATOR_1,
    TERMINATOR_2, C04D, C04E, GLYPH_ID_BASE, GLYPH_ID_MAX,
)

DOWN_ARROW = '\u25BC'      # ▼ C04D
DOWN_ARROW_ALT = '\u23F7'  # ⏷ C04E
HOURGLASS = '\u29D7'       # ⧗ WAIT_FOR_INPUT

TYPE_EVENT = 'event'
TYPE_DIALOGUE = 'dialogue'
DEFAULT_FONT_HEIGHT = 8


class Text(NamedTuple):
    text: str
    tag = 'text'


class Box(NamedTuple):
    width: int
    height: int
    tag = 'box'
    code = INIT_TEXT_BOX


class Tail(NamedTuple):
    width: int
    height: int
    tag = 'tail'
    code = INIT_TAIL


class F6Item(NamedTuple):
    width: int
    height: int
    tag = 'f6'
    code = F6


class Color(NamedTuple):
    value: int
    tag = 'color'
    code = CHANGE_COLOR_TO


class Pause(NamedTuple):
    duration: int
    tag = 'pause'
    code = PAUSE_FOR


class FFF2Item(NamedTuple):
    value: int
    tag = 'fff2'
    code = FFF2


CONTENT_TYPES = (Text, Box, Tail, F6Item, Color, Pause, FFF2Item)
_BY_TAG = {cls.tag: cls for cls in CONTENT_TYPES}
_BY_CODE = {cls.code: cls for cls in CONTENT_TYPES if cls is not Text}


def content_to_yaml(item):
    if isinstance(item, Text):
        return {'text': item.text}
    return {item.tag: dict(item._asdict())}


def content_from_yaml(entry):
    """Build a content item from a one-key YAML mapping."""
    if not isinstance(entry, dict) or len(entry) != 1:
        raise ValueError(f"content item must be a single-key mapping, got {entry!r}")
    (tag, value), = entry.items()
    cls = _BY_TAG.get(tag)
    if cls is None:
        raise ValueError(f"unknown content item '{tag}'")
    if cls is Text:
        return Text('' if value is None else str(value))
    if not isinstance(value, dict):
        raise ValueError(f"'{tag}' needs a mapping of {', '.join(cls._fields)}")
    try:
        return cls(**{field: int(value[field]) for field in cls._fields})
    except KeyError as e:
        raise ValueError(f"'{tag}' is missing {e.args[0]}") from e


class DecodedDialogue(NamedTuple):
    content: List[object]
    type: str
    font_height: int
    font_clut: int
    terminator: int


_TEXT_CODES = {
    WAIT_FOR_INPUT: HOURGLASS,
    NEWLINE: '\n',
    DOUBLE_NEWLINE: '\n\n',
    HALT: '[HALT]',
    F4: '[F4]',
    PROMPT: '[PROMPT]',
}


def decode_dialogue(stream, glyph_mapping=None, glyphs=None):
    """Walk a dialogue word stream and build its content items.

    Font height and CLUT come from the first glyph that resolves to a
    character. Without any resolved glyph the first existing glyph is used,
    so a font decoded with no reference fonts still gets its height; with no
    glyph at all they stay 8 and 0.
    """
    words = read_words(stream)
    glyph_mapping = glyph_mapping or {}
    glyphs = glyphs or []

    content = []
    pending = []
    entry_type = TYPE_EVENT
    resolved = None
    fallback = None
    terminator = TERMINATOR_2

    def flush():
        if pending:
            content.append(Text(''.join(pending)))
            pending.clear()

    i = 0
    while i < len(words):
        word = words[i]
        i += 1

        if word in (TERMINATOR_1, TERMINATOR_2):
            terminator = word
            break

        cls = _BY_CODE.get(word)
        if cls is not None:
            flush()
            if word == INIT_TEXT_BOX:
                entry_type = TYPE_DIALOGUE
            nargs = len(cls._fields)
            if i + nargs <= len(words):
                content.append(cls(*words[i:i + nargs]))
            i = min(i + nargs, len(words))
            continue

        if GLYPH_ID_BASE <= word <= GLYPH_ID_MAX:
            index = word - GLYPH_ID_BASE
            if index < len(glyphs):
                if fallback is None:
                    fallback = glyphs[index]
                if resolved is None and index in glyph_mapping:
                    resolved = glyphs[index]
            char = glyph_mapping.get(index)
            if char is None:
                if word == C04D:
                    char = DOWN_ARROW
                elif word == C04E:
                    char = DOWN_ARROW_ALT
                else:
                    char = f'[{word:04X}]'
            pending.append(char)
            continue

        pending.append(_TEXT_CODES.get(word, f'<{word:04X}>'))

    flush()
    font_height = DEFAULT_FONT_HEIGHT
    font_clut = 0
    source = resolved if resolved is not None else fallback
    if source is not None:
        if source.height in (16, 24):
            font_height = source.height
        font_clut = source.clut
    return DecodedDialogue(content, entry_type, font_height, font_clut,
                           1 if terminator == TERMINATOR_1 else 2)


TEXT_TAGS = {
    '[FFF2]': FFF2,
    '[HALT]': HALT,
    '[F4]': F4,
    '[PROMPT]': PROMPT,
    '[F6]': F6,
    '[CHANGE COLOR TO]': CHANGE_COLOR_TO,
    '[INIT TAIL]': INIT_TAIL,
    '[PAUSE FOR]': PAUSE_FOR,
    '[C04D]': C04D,
    '[C04E]': C04E,
    '[WAIT FOR INPUT]': WAIT_FOR_INPUT,
    '[INIT TEXT BOX]': INIT_TEXT_BOX,
}
_CHAR_CODES = {
    DOWN_ARROW: C04D,
    DOWN_ARROW_ALT: C04E,
    HOURGLASS: WAIT_FOR_INPUT,
}

UNMAPPED_RE = re.compile(r'\[[0-9A-F]{4}\]')
RAW_WORD_RE = re.compile(r'<([0-9A-F]{4})>')
_TOKEN_RE = re.compile(
    '|'.join(re.escape(tag) for tag in TEXT_TAGS)
    + r'|\[[0-9A-F]{4}\]|<[0-9A-F]{4}>|\n\n|.', re.DOTALL)


def tokenize(text):
    return _TOKEN_RE.findall(text)


def text_characters(text):
    """Characters in ``text`` that need a glyph (tags, placeholders and newlines removed)."""
    chars = []
    for token in tokenize(text):
        if len(token) != 1 or token == '\n' or token == HOURGLASS:
            continue
        chars.append(token)
    return chars


def encode_dialogue(content, font_height, glyph_ids, terminator=2, dialogue_id=0):
    """Render content items back to a word stream ending in the terminator.

    ``glyph_ids`` maps (font_height, char) to an assigned glyph ID.
    """
    words = []
    for item in content:
        if isinstance(item, Text):
            words.extend(_encode_text(item.text, font_height, glyph_ids, dialogue_id))
        elif isinstance(item, CONTENT_TYPES):
            words.append(item.code)
            words.extend(v & 0xFFFF for v in item)
        else:
            raise ValueError(f"dialogue {dialogue_id}: unsupported content item {item!r}")
    words.append(TERMINATOR_1 if terminator == 1 else TERMINATOR_2)
    return words


def _encode_text(text, font_height, glyph_ids, dialogue_id):
    words = []
    for token in tokenize(text):
        if token in TEXT_TAGS:
            words.append(TEXT_TAGS[token])
        elif UNMAPPED_RE.fullmatch(token):
            print(f"Warning: skipping unmapped glyph {token} in dialogue {dialogue_id}")
        elif RAW_WORD_RE.fullmatch(token):
            words.append(int(token[1:5], 16))
        elif token == '\n\n':
            words.append(DOUBLE_NEWLINE)
        elif token == '\n':
            words.append(NEWLINE)
        elif token in _CHAR_CODES:
            words.append(_CHAR_CODES[token])
        elif (font_height, token) in glyph_ids:
            words.append(glyph_ids[(font_height, token)])
        else:
            print(f"Warning: no glyph for '{token}' (U+{ord(token):04X}) in dialogue {dialogue_id}")
    return words
