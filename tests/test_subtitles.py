import pytest

from helpers import timings
from reelcraft.config import SubtitlesConfig
from reelcraft.subtitles import SubtitleGenerator, format_ass_time, to_ass_color


@pytest.mark.parametrize("color, expected", [
    ("#00BFFF", "&H00FFBF00"),
    ("#ff69b4", "&H00B469FF"),
    ("FFFFFF", "&H00FFFFFF"),
    ("&H00112233", "&H00112233"),
    ("not-a-colour", "&H00FFFFFF"),
    ("##00BFFF", "&H00FFFFFF"),
    ("", "&H00FFFFFF"),
])
def test_to_ass_color(color, expected):
    assert to_ass_color(color) == expected


def test_format_ass_time():
    assert format_ass_time(0) == "0:00:00.00"
    assert format_ass_time(3723.456) == "1:02:03.46"


def test_events_mirror_timings():
    words = timings(("Hello", 0.0, 0.25), ("world", 0.3, 0.55))
    subs = SubtitleGenerator().generate_from_timings(words)

    assert [s.text for s in subs] == ["Hello", "world"]
    assert [(s.start, s.end) for s in subs] == [(0.0, 0.25), (0.3, 0.55)]


def test_offset_shifts_and_clamps():
    words = timings(("a", 0.0, 0.2), ("b", 0.2, 0.6))
    subs = SubtitleGenerator(SubtitlesConfig(offset=-0.3)).generate_from_timings(words)
    assert [(s.start, s.end) for s in subs] == [(0.0, 0.0), (0.0, pytest.approx(0.3))]


def test_overlapping_events_are_clipped():
    words = timings(("a", 0.0, 0.5), ("b", 0.4, 0.8))
    first, second = SubtitleGenerator().generate_from_timings(words)
    assert first.end == 0.4
    assert second.start == 0.4


def test_generate_spreads_words_evenly():
    subs = SubtitleGenerator().generate("one two three four", 2.0)
    assert [(s.start, s.end) for s in subs] == [(0, 0.5), (0.5, 1.0), (1.0, 1.5), (1.5, 2.0)]
    assert SubtitleGenerator().generate("", 2.0) == []


def test_empty_document_has_headers_only():
    doc = SubtitleGenerator().to_ass([])
    assert "[Script Info]" in doc
    assert "[V4+ Styles]" in doc
    assert "Dialogue:" not in doc


def test_style_line_uses_config():
    cfg = SubtitlesConfig(font_name="Impact", font_size=96, primary_color="#FFFF00", bold=False)
    doc = SubtitleGenerator(cfg).to_ass([])
    style = next(line for line in doc.splitlines() if line.startswith("Style:"))
    fields = style[len("Style: "):].split(",")
    assert fields[:4] == ["Default", "Impact", "96", "&H0000FFFF"]
    assert fields[7] == "0"


def test_conversation_colours():
    words = timings(
        ("Did", 0.0, 0.2, "Adam"), ("you", 0.2, 0.4, "Adam"),
        ("Yes!", 0.5, 0.9, "Bella"),
    )
    gen = SubtitleGenerator()
    subs = gen.generate_from_timings(words, {"Adam": "#00BFFF", "Bella": "#FF69B4"})

    assert [s.color for s in subs] == ["#00BFFF", "#00BFFF", "#FF69B4"]
    doc = gen.to_ass(subs)
    dialogue = [line for line in doc.splitlines() if line.startswith("Dialogue:")]
    assert len(dialogue) == 3
    assert "{\\c&H00FFBF00&}Did" in dialogue[0]
    assert "{\\c&H00B469FF&}Yes!" in dialogue[2]
    assert dialogue[0].startswith("Dialogue: 0,0:00:00.00,0:00:00.20,Default,")


def test_speaker_without_colour_gets_default_style():
    words = timings(("hey", 0.0, 0.3, "Carl"))
    (sub,) = SubtitleGenerator().generate_from_timings(words, {"Adam": "#00BFFF"})
    assert sub.color == ""
    assert "{\\c" not in SubtitleGenerator().to_ass([sub])
