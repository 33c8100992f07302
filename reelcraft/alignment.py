"""Map character-level TTS alignment onto the words of the script."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from reelcraft.models import WordTiming
from reelcraft.timing import estimate_timings

logger = logging.getLogger(__name__)

_WHITESPACE = frozenset({" ", "\n", "\t"})


@dataclass
class CharacterAlignment:
    """Per-character timing arrays as returned by the TTS vendor."""
    characters: list[str] = field(default_factory=list)
    starts: list[float] = field(default_factory=list)
    ends: list[float] = field(default_factory=list)

    @classmethod
    def from_response(cls, data: dict[str, Any] | None) -> CharacterAlignment | None:
        """Parse the ``alignment`` block of an ElevenLabs response.

        The non-normalized alignment is preferred because it follows the text
        that was sent; ``normalized_alignment`` is used only when it is absent.
        """
        if not data:
            return None
        block = data.get("alignment") or data.get("normalized_alignment")
        if not block:
            return None
        return cls(
            characters=list(block.get("characters") or []),
            starts=[float(t) for t in block.get("character_start_times_seconds") or []],
            ends=[float(t) for t in block.get("character_end_times_seconds") or []],
        )

    def __bool__(self) -> bool:
        return bool(self.characters)


def extract_word_timings(
    text: str,
    alignment: CharacterAlignment | None,
    audio: bytes = b"",
) -> list[WordTiming]:
    """Collapse character timings into one timing per whitespace token.

    Words are matched by non-whitespace character count only, so differences
    between the script's punctuation and the vendor's character stream are
    tolerated. Falls back to an estimate from the audio length when the
    alignment is missing or yields nothing.
    """
    words = text.split()
    if not words:
        return []

    if not alignment:
        logger.debug("No alignment data, estimating timings for %d words", len(words))
        return estimate_timings(text, audio)

    chars = alignment.characters
    starts = alignment.starts
    ends = alignment.ends

    timings: list[WordTiming] = []
    cursor = 0
    for word in words:
        while cursor < len(chars) and chars[cursor] in _WHITESPACE:
            cursor += 1
        if cursor >= len(chars):
            break

        start_idx = cursor
        consumed = 0
        while cursor < len(chars) and consumed < len(word):
            if chars[cursor] not in _WHITESPACE:
                consumed += 1
            cursor += 1
        end_idx = cursor

        if start_idx < len(starts) and 0 < end_idx <= len(ends):
            timings.append(WordTiming(
                word=word,
                start=starts[start_idx],
                end=ends[end_idx - 1],
            ))

    if not timings:
        logger.warning("Alignment produced no word timings, falling back to estimate")
        return estimate_timings(text, audio)

    if len(timings) < len(words):
        logger.debug("Alignment covered %d of %d words", len(timings), len(words))
    return timings
