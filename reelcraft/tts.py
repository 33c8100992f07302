"""Speech synthesis backends: ElevenLabs with word timestamps, and an offline stub."""

from __future__ import annotations

import base64
import binascii
import io
import itertools
import logging
import threading
import wave
from typing import Any, Protocol

import httpx

from reelcraft.alignment import CharacterAlignment, extract_word_timings
from reelcraft.config import ElevenLabsConfig
from reelcraft.errors import (
    InvalidInputError,
    UpstreamError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
    transport_error,
    upstream_error,
)
from reelcraft.models import SpeechResult, VoiceConfig, WordTiming
from reelcraft.timing import (
    DEFAULT_WORDS_PER_MINUTE,
    add_pauses,
    estimate_speech_duration,
    estimate_timings_from_duration,
)

logger = logging.getLogger(__name__)

_ELEVENLABS_BASE = "https://api.elevenlabs.io"
_QUOTA_MARKERS = ("quota_exceeded", "rate_limit")

_WAV_SAMPLE_RATE = 44100
_WAV_CHANNELS = 1
_WAV_SAMPLE_WIDTH = 2


class SpeechProvider(Protocol):
    async def synthesize(self, text: str) -> bytes: ...

    async def synthesize_with_timings(self, text: str) -> SpeechResult: ...

    async def synthesize_with_voice(self, text: str, voice: VoiceConfig) -> SpeechResult: ...


def _with_speaker(timings: list[WordTiming], speaker: str) -> list[WordTiming]:
    return [WordTiming(word=t.word, start=t.start, end=t.end, speaker=speaker) for t in timings]


def _restore_script_words(timings: list[WordTiming], script: str) -> list[WordTiming]:
    """Swap pause-lengthened tokens back to the words as written.

    Pause insertion never adds whitespace, so token positions line up.
    """
    words = script.split()
    return [
        WordTiming(word=words[i], start=t.start, end=t.end, speaker=t.speaker) if i < len(words) else t
        for i, t in enumerate(timings)
    ]


def is_quota_error(exc: UpstreamError) -> bool:
    if exc.status_code == 429:
        return True
    body = str(exc.body or "")
    return any(marker in body for marker in _QUOTA_MARKERS)


class ElevenLabsClient:
    """Async client for the ElevenLabs ``with-timestamps`` endpoint.

    Several API keys may be configured; calls rotate through them and a quota
    error moves on to the next key before giving up.

    Usage::

        async with ElevenLabsClient(config.elevenlabs) as tts:
            result = await tts.synthesize_with_timings("Hello world")
    """

    def __init__(
        self,
        config: ElevenLabsConfig,
        add_pauses: bool = False,
        base_url: str = _ELEVENLABS_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not config.api_keys:
            raise InvalidInputError("elevenlabs.api_keys is empty")
        self.config = config
        self.add_pauses = add_pauses
        self._keys = list(config.api_keys)
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(config.timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> ElevenLabsClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _next_key_index(self) -> int:
        with self._lock:
            return next(self._counter) % len(self._keys)

    async def synthesize(self, text: str) -> bytes:
        result = await self._generate(text, self.config.voice_id)
        return result.audio

    async def synthesize_with_timings(self, text: str) -> SpeechResult:
        return await self._generate(text, self.config.voice_id)

    async def synthesize_with_voice(self, text: str, voice: VoiceConfig) -> SpeechResult:
        result = await self._generate(text, voice.voice_id or self.config.voice_id)
        return SpeechResult(audio=result.audio, timings=_with_speaker(list(result.timings), voice.name))

    async def _generate(self, text: str, voice_id: str) -> SpeechResult:
        if not text.strip():
            raise InvalidInputError("Cannot synthesise empty text")
        if not voice_id:
            raise InvalidInputError("No ElevenLabs voice id configured")
        spoken = add_pauses(text) if self.add_pauses else text

        first = self._next_key_index()
        last_error: UpstreamError | None = None
        for offset in range(len(self._keys)):
            key = self._keys[(first + offset) % len(self._keys)]
            try:
                return await self._request(spoken, voice_id, key, script=text)
            except UpstreamError as exc:
                if not is_quota_error(exc):
                    raise
                logger.warning("ElevenLabs key #%d hit its quota, rotating", (first + offset) % len(self._keys))
                last_error = exc

        raise UpstreamUnavailableError(
            f"elevenlabs: all API keys exhausted: {last_error}",
            status_code=last_error.status_code if last_error else None,
            body=last_error.body if last_error else None,
        )

    async def _request(self, text: str, voice_id: str, api_key: str, script: str = "") -> SpeechResult:
        payload = {
            "text": text,
            "model_id": self.config.model_id,
            "voice_settings": {
                "stability": self.config.stability,
                "similarity_boost": self.config.similarity,
                "speed": self.config.speed,
            },
        }
        logger.info("ElevenLabs TTS: voice=%s, %d chars", voice_id, len(text))
        try:
            response = await self._client.post(
                f"/v1/text-to-speech/{voice_id}/with-timestamps",
                json=payload,
                headers={"xi-api-key": api_key},
            )
        except httpx.HTTPError as exc:
            raise transport_error("elevenlabs", exc) from exc
        if response.status_code != 200:
            raise upstream_error("elevenlabs", response)
        return self._parse(text, response, script or text)

    def _parse(self, text: str, response: httpx.Response, script: str) -> SpeechResult:
        try:
            data = response.json()
            audio = base64.b64decode(data.get("audio_base64") or "", validate=True)
        except (ValueError, binascii.Error) as exc:
            raise UpstreamRejectedError(
                f"elevenlabs: malformed response: {exc}", status_code=response.status_code,
                body=response.text[:500],
            ) from exc

        alignment = CharacterAlignment.from_response(data)
        timings = extract_word_timings(text, alignment, audio)
        if script != text:
            timings = _restore_script_words(timings, script)
        logger.debug("ElevenLabs returned %d bytes, %d word timings", len(audio), len(timings))
        return SpeechResult(audio=audio, timings=timings)


def silent_wav(duration: float) -> bytes:
    """16-bit mono 44.1 kHz PCM WAV of the given length."""
    frames = max(int(duration * _WAV_SAMPLE_RATE), 0)
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(_WAV_CHANNELS)
        wav.setsampwidth(_WAV_SAMPLE_WIDTH)
        wav.setframerate(_WAV_SAMPLE_RATE)
        wav.writeframes(b"\x00" * (frames * _WAV_CHANNELS * _WAV_SAMPLE_WIDTH))
    return buf.getvalue()


class StubSpeechProvider:
    """Offline provider: silent audio with timings estimated from a word rate."""

    def __init__(self, words_per_minute: float = DEFAULT_WORDS_PER_MINUTE) -> None:
        if words_per_minute <= 0:
            words_per_minute = DEFAULT_WORDS_PER_MINUTE
        self.words_per_minute = words_per_minute

    async def synthesize(self, text: str) -> bytes:
        return silent_wav(estimate_speech_duration(text, self.words_per_minute))

    async def synthesize_with_timings(self, text: str) -> SpeechResult:
        duration = estimate_speech_duration(text, self.words_per_minute)
        return SpeechResult(
            audio=silent_wav(duration),
            timings=estimate_timings_from_duration(text, duration),
        )

    async def synthesize_with_voice(self, text: str, voice: VoiceConfig) -> SpeechResult:
        result = await self.synthesize_with_timings(text)
        return SpeechResult(audio=result.audio, timings=_with_speaker(list(result.timings), voice.name))
