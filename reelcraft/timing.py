"""Timing estimation helpers used when no vendor alignment is available."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from reelcraft.models import VoiceConfig, WordTiming

DEFAULT_WORDS_PER_MINUTE = 150.0

# Nominal bitrate for the byte-length duration guess.
_NOMINAL_BITRATE = 128_000


def estimate_timings_from_duration(text: str, duration: float) -> list[WordTiming]:
    """Spread the words of ``text`` over ``duration`` seconds.

    Longer words get proportionally more time (0.8x-1.2x of the average for a
    5-character baseline). Words are contiguous, start at 0 and the last word
    ends exactly at ``duration``.
    """
    words = text.split()
    if not words:
        return []

    avg = duration / len(words)
    spans: list[tuple[str, float, float]] = []
    current = 0.0
    for word in words:
        word_duration = avg * (0.8 + 0.4 * len(word) / 5.0)
        spans.append((word, current, current + word_duration))
        current += word_duration

    if current > 0 and current != duration:
        scale = duration / current
        spans = [(w, s * scale, e * scale) for w, s, e in spans]
    if current > 0:
        word, start, _ = spans[-1]
        spans[-1] = (word, start, duration)

    return [WordTiming(word=w, start=s, end=e) for w, s, e in spans]


def estimate_audio_duration(audio: bytes) -> float:
    """Very coarse duration guess: bytes at 128 kbps."""
    return len(audio) * 8 / _NOMINAL_BITRATE


def estimate_timings(text: str, audio: bytes) -> list[WordTiming]:
    return estimate_timings_from_duration(text, estimate_audio_duration(audio))


def estimate_speech_duration(text: str, words_per_minute: float = DEFAULT_WORDS_PER_MINUTE) -> float:
    """Duration of ``text`` spoken at a constant word rate."""
    if words_per_minute <= 0:
        words_per_minute = DEFAULT_WORDS_PER_MINUTE
    return len(text.split()) / words_per_minute * 60.0


def add_pauses(text: str) -> str:
    """Lengthen sentence breaks so the TTS voice pauses between sentences.

    Existing ellipses are kept as they are.
    """
    text = text.replace("...", "…")
    text = text.replace(". ", "... ")
    text = text.replace("! ", "!.. ")
    text = text.replace("? ", "?.. ")
    return text.replace("…", "...")


def total_duration(timings: Sequence[WordTiming]) -> float:
    return timings[-1].end if timings else 0.0


def build_voice_map(voices: Iterable[VoiceConfig]) -> dict[str, VoiceConfig]:
    return {v.name: v for v in voices}


def build_speaker_colors(voice_map: dict[str, VoiceConfig]) -> dict[str, str]:
    """Speaker name -> subtitle colour, for voices that define one."""
    return {
        name: voice.subtitle_color
        for name, voice in voice_map.items()
        if voice.subtitle_color
    }
