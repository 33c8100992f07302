"""Locate visual-cue keywords inside a word-timing stream."""

from __future__ import annotations

from collections.abc import Sequence

from reelcraft.models import WordTiming

_PUNCTUATION = ".,!?;:'\"()[]{}"


def clean_word(word: str) -> str:
    """Strip surrounding punctuation and lower-case."""
    return word.strip(_PUNCTUATION).lower()


def _find_single(
    cleaned: list[str], keyword: str, start_from: int, exact_only: bool = False,
) -> int:
    indices = [i for i in range(start_from, len(cleaned)) if cleaned[i]]

    for i in indices:
        if cleaned[i] == keyword:
            return i
    if exact_only:
        return -1

    for i in indices:
        if keyword in cleaned[i] or cleaned[i] in keyword:
            return i

    # Near-prefix: "octopus" / "octopuses", "jump" / "jumps".
    if len(keyword) > 3:
        for i in indices:
            word = cleaned[i]
            if len(word) > 3 and (word.startswith(keyword[:-1]) or keyword.startswith(word[:-1])):
                return i
    return -1


def locate_keyword(timings: Sequence[WordTiming], keyword: str, start_from: int = 0) -> int:
    """Return the index of the word matching ``keyword``, or -1.

    Matching is case- and punctuation-insensitive. Single-word keywords are
    tried as exact, substring and near-prefix matches, in that order.
    Multi-word keywords must match a contiguous run; failing that the first
    keyword word is matched exactly on its own.
    """
    tokens = [t for t in (clean_word(tok) for tok in clean_word(keyword).split()) if t]
    if not tokens or not timings:
        return -1
    start_from = max(start_from, 0)

    cleaned = [clean_word(t.word) for t in timings]

    if len(tokens) == 1:
        return _find_single(cleaned, tokens[0], start_from)

    n = len(tokens)
    for i in range(start_from, len(cleaned) - n + 1):
        if cleaned[i:i + n] == tokens:
            return i
    return _find_single(cleaned, tokens[0], start_from, exact_only=True)


def find_anchor(timings: Sequence[WordTiming], keyword: str, start_from: int = 0) -> int:
    """Like :func:`locate_keyword`, retrying from the start on a miss."""
    index = locate_keyword(timings, keyword, start_from)
    if index < 0 and start_from > 0:
        index = locate_keyword(timings, keyword, 0)
    return index


def speaker_segment_end(timings: Sequence[WordTiming], index: int) -> float:
    """End time of the contiguous run of words spoken by ``timings[index]``'s speaker.

    An empty speaker label matches every following word.
    """
    if index < 0 or index >= len(timings):
        return 0.0

    speaker = timings[index].speaker
    end = timings[index].end
    for t in timings[index + 1:]:
        if speaker and t.speaker != speaker:
            break
        end = t.end
    return end
