import pytest

from tombatools.common.psx import pack_words
from tombatools.wfm_format import (
    C04D, CHANGE_COLOR_TO, DOUBLE_NEWLINE, Glyph, HALT, INIT_TAIL, INIT_TEXT_BOX, NEWLINE,
    PAUSE_FOR, TERMINATOR_1, TERMINATOR_2, WAIT_FOR_INPUT,
)
from tombatools.wfm_text import (
    Box, Color, FFF2Item, Pause, Tail, Text, TYPE_DIALOGUE, TYPE_EVENT,
    content_from_yaml, content_to_yaml, decode_dialogue, encode_dialogue, text_characters, tokenize,
)

GLYPHS = [Glyph(0x12, 16, 8, 0, bytes(64)), Glyph(0x12, 16, 8, 0, bytes(64))]
MAPPING = {0: 'H', 1: 'i'}


def decode(words, mapping=MAPPING, glyphs=GLYPHS):
    return decode_dialogue(pack_words(words), mapping, glyphs)


def test_text_and_structure():
    decoded = decode([INIT_TEXT_BOX, 40, 16, 0x8000, 0x8001, NEWLINE, 0x8001, DOUBLE_NEWLINE,
                      WAIT_FOR_INPUT, CHANGE_COLOR_TO, 3, 0x8000, TERMINATOR_1])
    assert decoded.content == [Box(40, 16), Text('Hi\ni\n\n⧗'), Color(3), Text('H')]
    assert decoded.type == TYPE_DIALOGUE
    assert decoded.font_height == 16
    assert decoded.font_clut == 0x12
    assert decoded.terminator == 1


def test_pending_text_is_flushed_before_a_box():
    decoded = decode([0x8000, INIT_TEXT_BOX, 8, 8, 0x8001, TERMINATOR_2])
    assert decoded.content == [Text('H'), Box(8, 8), Text('i')]


def test_event_defaults():
    decoded = decode([PAUSE_FOR, 30, TERMINATOR_2], {}, [])
    assert decoded.content == [Pause(30)]
    assert decoded.type == TYPE_EVENT
    assert (decoded.font_height, decoded.font_clut) == (8, 0)


def test_font_comes_from_first_resolved_glyph():
    glyphs = [Glyph(0x24, 24, 8, 0, bytes(96)), Glyph(0x16, 16, 8, 0, bytes(64))]
    words = [0x8000, 0x8001, TERMINATOR_2]
    decoded = decode(words, {1: 'i'}, glyphs)
    assert decoded.content == [Text('[8000]i')]
    assert (decoded.font_height, decoded.font_clut) == (16, 0x16)
    # nothing resolves: first existing glyph
    decoded = decode(words, {}, glyphs)
    assert (decoded.font_height, decoded.font_clut) == (24, 0x24)


def test_placeholders():
    decoded = decode([0x8005, C04D, HALT, 0x1234, TERMINATOR_2], {}, [])
    assert decoded.content == [Text('[8005]▼[HALT]<1234>')]


def test_empty_stream():
    decoded = decode_dialogue(b'')
    assert decoded.content == []
    assert decoded.terminator == 2


def test_yaml_items():
    assert content_to_yaml(Box(16, 8)) == {'box': {'width': 16, 'height': 8}}
    assert content_to_yaml(Text('abc')) == {'text': 'abc'}
    assert content_from_yaml({'tail': {'width': 4, 'height': 2}}) == Tail(4, 2)
    assert content_from_yaml({'fff2': {'value': 9}}) == FFF2Item(9)
    assert content_from_yaml({'text': None}) == Text('')
    for item in (Box(1, 2), Color(7), Pause(60), Text('x\ny')):
        assert content_from_yaml(content_to_yaml(item)) == item


@pytest.mark.parametrize('entry', [
    {'nope': 1},
    {'box': {'width': 1}},
    {'color': 5},
    [1, 2],
    {'text': 'a', 'box': {}},
])
def test_bad_yaml_items(entry):
    with pytest.raises(ValueError):
        content_from_yaml(entry)


def test_tokenize():
    assert tokenize('[HALT]ab\n\n<1234>[8001]\n') == ['[HALT]', 'a', 'b', '\n\n', '<1234>', '[8001]', '\n']
    assert text_characters('[PROMPT]Hi ⧗\n▼') == ['H', 'i', ' ', '▼']


def test_encode():
    glyph_ids = {(8, 'A'): 0x8000, (8, 'B'): 0x8001}
    words = encode_dialogue([Box(16, 8), Text('AB\n'), Color(3), Text('▼⧗<00AA>[F4]')],
                            8, glyph_ids, terminator=2)
    assert words == [INIT_TEXT_BOX, 16, 8, 0x8000, 0x8001, NEWLINE, CHANGE_COLOR_TO, 3,
                     C04D, WAIT_FOR_INPUT, 0x00AA, 0xFFF4, TERMINATOR_2]


def test_encode_skips_unknown(capsys):
    words = encode_dialogue([Text('A?[8009]'), Tail(2, 2)], 8, {(8, 'A'): 0x8000}, terminator=1)
    assert words == [0x8000, INIT_TAIL, 2, 2, TERMINATOR_1]
    out = capsys.readouterr().out
    assert "no glyph for '?'" in out
    assert 'unmapped glyph [8009]' in out


def test_decode_encode_keeps_words():
    words = [INIT_TEXT_BOX, 40, 16, 0x8000, 0x8001, NEWLINE, HALT, 0x0042, DOUBLE_NEWLINE,
             PAUSE_FOR, 10, 0x8000, TERMINATOR_2]
    decoded = decode(words)
    glyph_ids = {(16, 'H'): 0x8000, (16, 'i'): 0x8001}
    assert encode_dialogue(decoded.content, decoded.font_height, glyph_ids, decoded.terminator) == words
