"""Word-level subtitles rendered as an ASS (Advanced SubStation Alpha) document."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence

from reelcraft.config import DEFAULT_HEIGHT, DEFAULT_WIDTH, SubtitlesConfig
from reelcraft.models import Subtitle, WordTiming

logger = logging.getLogger(__name__)

_WHITE = "&H00FFFFFF"
_BLACK = "&H00000000"
_HEX6 = re.compile(r"^[0-9A-Fa-f]{6}$")

_STYLE_FORMAT = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
    "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, "
    "BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding"
)
_EVENT_FORMAT = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"


def to_ass_color(color: str) -> str:
    """Convert ``#RRGGBB`` to the ASS ``&H00BBGGRR`` form.

    ``&H`` literals pass through unchanged; anything else becomes white.
    """
    color = (color or "").strip()
    if color.upper().startswith("&H"):
        return color
    hex_part = color.removeprefix("#")
    if not _HEX6.match(hex_part):
        return _WHITE
    r, g, b = hex_part[0:2], hex_part[2:4], hex_part[4:6]
    return f"&H00{b}{g}{r}".upper()


def format_ass_time(seconds: float) -> str:
    """Format seconds as ``H:MM:SS.CC``."""
    centis = max(int(round(seconds * 100)), 0)
    hours, rest = divmod(centis, 360_000)
    minutes, rest = divmod(rest, 6_000)
    secs, cs = divmod(rest, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{cs:02d}"


def _escape_text(text: str) -> str:
    return text.replace("{", "(").replace("}", ")").replace("\n", "\\N")


class SubtitleGenerator:
    """Builds subtitle events and renders them with one centred style."""

    def __init__(self, config: SubtitlesConfig | None = None) -> None:
        self.config = config or SubtitlesConfig()
        self.primary_color = to_ass_color(self.config.primary_color) if self.config.primary_color else _WHITE
        self.outline_color = to_ass_color(self.config.outline_color) if self.config.outline_color else _BLACK

    def generate(self, text: str, duration: float) -> list[Subtitle]:
        """Evenly spread the words of ``text`` over ``duration``."""
        words = text.split()
        if not words:
            return []
        per_word = duration / len(words)
        subs = [
            Subtitle(text=word, start=i * per_word, end=(i + 1) * per_word)
            for i, word in enumerate(words)
        ]
        return self._finalize(subs)

    def generate_from_timings(
        self,
        timings: Sequence[WordTiming],
        speaker_colors: Mapping[str, str] | None = None,
    ) -> list[Subtitle]:
        """One event per word; colour attached when the speaker has an entry."""
        colors = speaker_colors or {}
        subs = [
            Subtitle(
                text=t.word,
                start=t.start,
                end=t.end,
                color=colors.get(t.speaker, "") if t.speaker else "",
            )
            for t in timings
        ]
        return self._finalize(subs)

    def _finalize(self, subs: list[Subtitle]) -> list[Subtitle]:
        offset = self.config.offset
        if offset:
            subs = [
                Subtitle(
                    text=s.text,
                    start=max(s.start + offset, 0.0),
                    end=max(s.end + offset, 0.0),
                    color=s.color,
                )
                for s in subs
            ]

        # Events must not overlap: clip an end that runs into the next word.
        for i in range(len(subs) - 1):
            nxt_start = subs[i + 1].start
            if subs[i].end > nxt_start and nxt_start >= subs[i].start:
                subs[i] = Subtitle(
                    text=subs[i].text, start=subs[i].start, end=nxt_start, color=subs[i].color,
                )
        return subs

    def to_ass(self, subtitles: Sequence[Subtitle]) -> str:
        cfg = self.config
        bold = -1 if cfg.bold else 0
        lines = [
            "[Script Info]",
            "Title: Generated Subtitles",
            "ScriptType: v4.00+",
            f"PlayResX: {DEFAULT_WIDTH}",
            f"PlayResY: {DEFAULT_HEIGHT}",
            "WrapStyle: 0",
            "",
            "[V4+ Styles]",
            _STYLE_FORMAT,
            (
                f"Style: Default,{cfg.font_name},{cfg.font_size},"
                f"{self.primary_color},{self.primary_color},{self.outline_color},&H80000000,"
                f"{bold},0,0,0,100,100,0,0,1,{cfg.outline_size},{cfg.shadow_size},5,10,10,50,1"
            ),
            "",
            "[Events]",
            _EVENT_FORMAT,
        ]
        for sub in subtitles:
            text = _escape_text(sub.text)
            if sub.color:
                text = f"{{\\c{to_ass_color(sub.color)}&}}{text}"
            lines.append(
                f"Dialogue: 0,{format_ass_time(sub.start)},{format_ass_time(sub.end)},"
                f"Default,,0,0,0,,{text}"
            )
        return "\n".join(lines) + "\n"
