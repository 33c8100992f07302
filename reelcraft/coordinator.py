"""Job coordinator: drives one video build from script to muxed file.

Stages run strictly in order, each under its own deadline:

    draft_script -> synthesise -> stitch -> fetch_overlays
        -> render_subtitles -> mux

The coordinator is the only component that mutates a :class:`Job`. Any stage
failure marks the job FAILED and removes partial overlay and subtitle files;
cancellation does the same and then propagates.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, TypeVar

from reelcraft.assembler import MuxRequest, VideoAssembler, output_filename
from reelcraft.background import BackgroundProvider
from reelcraft.config import AppConfig
from reelcraft.dialogue import parse_dialogue
from reelcraft.errors import (
    InvalidInputError,
    MediaValidationError,
    MuxError,
    ReelcraftError,
    UpstreamError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from reelcraft.llm import LLMClient, fallback_title
from reelcraft.models import (
    ImageOverlay,
    Job,
    JobStage,
    JobStatus,
    SpeechResult,
    StitchedAudio,
    VisualCue,
    VoiceConfig,
)
from reelcraft.stitcher import AudioStitcher, sniff_audio_extension
from reelcraft.subtitles import SubtitleGenerator
from reelcraft.timing import build_speaker_colors, build_voice_map
from reelcraft.tts import SpeechProvider
from reelcraft.visuals import MediaSearcher, VisualFetcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

JOB_RECORD = "job.json"
_PARTIAL_PATTERNS = ("image_*", "subs_*")


class Uploader(Protocol):
    async def upload(self, path: Path, title: str, description: str) -> str: ...


@dataclass
class Narration:
    """Spoken text plus the per-segment speech and subtitle colours."""
    text: str
    segments: list[SpeechResult]
    speaker_colors: dict[str, str] = field(default_factory=dict)


def new_job(output_root: Path, script: str = "", topic: str = "") -> Job:
    job_id = uuid.uuid4().hex[:12]
    return Job(id=job_id, output_dir=Path(output_root) / job_id, script=script, topic=topic)


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, asyncio.CancelledError):
        return "cancelled"
    if isinstance(exc, InvalidInputError):
        return "invalid_input"
    if isinstance(exc, UpstreamUnavailableError):
        return "upstream_unavailable"
    if isinstance(exc, UpstreamRejectedError):
        return "upstream_rejected"
    if isinstance(exc, UpstreamError):
        return "upstream"
    if isinstance(exc, MediaValidationError):
        return "media_validation"
    if isinstance(exc, MuxError):
        return "mux_failure"
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return "timeout"
    if isinstance(exc, OSError):
        return "io"
    return "internal"


class JobCoordinator:
    """Runs jobs against a fixed set of collaborators.

    Usage::

        coordinator = JobCoordinator(config, speech, background=provider)
        job = await coordinator.run(new_job(out_dir, script=text))
    """

    def __init__(
        self,
        config: AppConfig,
        speech: SpeechProvider,
        llm: LLMClient | None = None,
        image_search: MediaSearcher | None = None,
        gif_search: MediaSearcher | None = None,
        background: BackgroundProvider | None = None,
        assembler: VideoAssembler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.speech = speech
        self.llm = llm
        self.image_search = image_search
        self.gif_search = gif_search
        self.background = background
        self.assembler = assembler or VideoAssembler(
            config.video,
            music_dir=config.resolve(config.video.music_dir) if config.video.music_dir else None,
        )
        self.subtitles = SubtitleGenerator(config.subtitles)
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, job: Job, cues: Sequence[VisualCue] | None = None) -> Job:
        """Build the video for ``job``.

        Failures are recorded on the job (status FAILED, ``error`` and
        ``error_kind``) rather than raised. Cancellation is recorded and
        re-raised.
        """
        job.status = JobStatus.PROCESSING
        job.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Job %s started in %s", job.id, job.output_dir)

        try:
            await self._run_stages(job, cues)
        except asyncio.CancelledError:
            self._fail(job, "cancelled", "job cancelled")
            raise
        except (ReelcraftError, OSError, asyncio.TimeoutError) as exc:
            self._fail(job, error_kind(exc), str(exc) or exc.__class__.__name__)
        except Exception as exc:
            logger.exception("Job %s hit an unexpected error", job.id)
            self._fail(job, error_kind(exc), f"{exc.__class__.__name__}: {exc}")
        else:
            job.status = JobStatus.COMPLETED
            job.stage = JobStage.DONE
            job.finished_at = self._clock()
            logger.info("Job %s completed: %s", job.id, job.video_path)
        finally:
            self._write_record(job)
        return job

    async def upload(self, job: Job, uploader: Uploader, description: str = "") -> Job:
        """Publish a completed job's video and mark it UPLOADED."""
        if job.status is not JobStatus.COMPLETED or job.video_path is None:
            raise InvalidInputError(f"Job {job.id} is {job.status.value}, only completed jobs can be uploaded")
        url = await uploader.upload(job.video_path, job.title, description)
        job.upload_url = url
        job.status = JobStatus.UPLOADED
        logger.info("Job %s uploaded: %s", job.id, url)
        self._write_record(job)
        return job

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run_stages(self, job: Job, cues: Sequence[VisualCue] | None) -> None:
        timeouts = self.config.timeouts

        await self._stage(job, JobStage.DRAFT_SCRIPT, self._draft(job), timeouts.draft)
        narration = await self._stage(
            job, JobStage.SYNTHESISE, self._synthesise(job.script), timeouts.synthesise,
        )
        stitched = await self._stage(
            job, JobStage.STITCH, self._stitch(job, narration.segments), timeouts.stitch,
        )
        job.overlays = await self._stage(
            job, JobStage.FETCH_OVERLAYS,
            self._fetch_overlays(job, narration.text, stitched, cues),
            timeouts.fetch_overlays,
        )
        subtitle_path = await self._stage(
            job, JobStage.RENDER_SUBTITLES,
            self._render_subtitles(job, stitched, narration.speaker_colors),
            timeouts.render_subtitles,
        )
        try:
            job.video_path = await self._stage(
                job, JobStage.MUX, self._mux(job, stitched, subtitle_path), timeouts.mux,
            )
        finally:
            subtitle_path.unlink(missing_ok=True)

    async def _stage(self, job: Job, stage: JobStage, work: Awaitable[T], timeout: float) -> T:
        job.stage = stage
        logger.info("Job %s: %s", job.id, stage.value)
        started = time.monotonic()
        result = await asyncio.wait_for(work, timeout if timeout > 0 else None)
        logger.debug("Job %s: %s took %.2fs", job.id, stage.value, time.monotonic() - started)
        return result

    def _conversation_voices(self) -> list[VoiceConfig]:
        voices = self.config.elevenlabs.voices
        if self.config.video.conversation_mode and len(voices) >= 2:
            return list(voices)
        return []

    async def _draft(self, job: Job) -> None:
        if not job.script.strip() and job.topic.strip():
            if self.llm is None:
                raise InvalidInputError("A topic was given but no LLM is configured")
            voices = self._conversation_voices()
            if voices:
                job.script = await self.llm.generate_conversation(job.topic, [v.name for v in voices])
            else:
                job.script = await self.llm.generate_script(job.topic)

        if not job.script.strip():
            raise InvalidInputError("Script is empty")

        if not job.title:
            job.title = await self._draft_title(job)

        script_path = job.output_dir / "script.txt"
        await asyncio.to_thread(script_path.write_text, job.script, encoding="utf-8")

    async def _draft_title(self, job: Job) -> str:
        if self.llm is not None:
            try:
                title = await self.llm.generate_title(job.script)
            except UpstreamError as exc:
                logger.warning("Title generation failed, using fallback: %s", exc)
            else:
                if title:
                    return title
        return fallback_title(job.topic, job.script)

    async def _synthesise(self, script: str) -> Narration:
        voices = self._conversation_voices()
        dialogue = parse_dialogue(script) if voices else None

        if dialogue is None or dialogue.is_empty:
            if voices:
                logger.warning("Script has no 'Speaker: text' lines, using a single voice")
            result = await self.speech.synthesize_with_timings(script)
            return Narration(text=script, segments=[result])

        voice_map = build_voice_map(voices)
        logger.info(
            "Conversation: %d line(s), speakers %s", len(dialogue.lines), ", ".join(dialogue.speakers()),
        )
        segments = []
        for i, line in enumerate(dialogue.lines, 1):
            voice = voice_map.get(line.speaker)
            if voice is None:
                logger.warning("Unknown speaker %r, using voice %r", line.speaker, voices[0].name)
                voice = voices[0]
            logger.debug("Synthesising line %d (%s)", i, voice.name)
            segments.append(await self.speech.synthesize_with_voice(line.text, voice))

        return Narration(
            text=dialogue.full_text(),
            segments=segments,
            speaker_colors=build_speaker_colors(voice_map),
        )

    async def _stitch(self, job: Job, segments: list[SpeechResult]) -> StitchedAudio:
        stitched = await AudioStitcher(job.output_dir).stitch(segments)

        ext = sniff_audio_extension(stitched.data)
        audio_path = job.output_dir / f"audio{'.mp3' if ext == '.bin' else ext}"
        await asyncio.to_thread(audio_path.write_bytes, stitched.data)
        job.audio_path = audio_path
        job.duration = stitched.duration
        logger.info("Saved narration %s (%.2fs, %d words)", audio_path.name, stitched.duration, len(stitched.timings))
        return stitched

    async def _fetch_overlays(
        self,
        job: Job,
        text: str,
        stitched: StitchedAudio,
        cues: Sequence[VisualCue] | None,
    ) -> list[ImageOverlay]:
        if not self.config.visuals.enabled:
            logger.info("Visuals disabled")
            return []
        if cues is None:
            cues = await self._draft_cues(text)

        fetcher = VisualFetcher(self.image_search, self.gif_search, self.config.visuals)
        return await fetcher.fetch(cues, stitched.timings, job.output_dir)

    async def _draft_cues(self, text: str) -> list[VisualCue]:
        if self.llm is None:
            return []
        try:
            return await self.llm.generate_visuals(text)
        except UpstreamError as exc:
            logger.warning("Visual cue drafting failed, continuing without overlays: %s", exc)
            return []

    async def _render_subtitles(
        self, job: Job, stitched: StitchedAudio, speaker_colors: dict[str, str],
    ) -> Path:
        events = self.subtitles.generate_from_timings(stitched.timings, speaker_colors)
        path = job.output_dir / f"subs_{job.id}.ass"
        await asyncio.to_thread(path.write_text, self.subtitles.to_ass(events), encoding="utf-8")
        logger.info("Rendered %d subtitle event(s) to %s", len(events), path.name)
        return path

    async def _mux(self, job: Job, stitched: StitchedAudio, subtitle_path: Path) -> Path:
        if self.background is None:
            raise InvalidInputError("No background clip provider configured")
        if job.audio_path is None:
            raise InvalidInputError("No narration audio to mux")
        background = await self.background.pick_random_clip()
        request = MuxRequest(
            background=background,
            audio_path=job.audio_path,
            subtitle_path=subtitle_path,
            duration=stitched.duration,
            output_path=job.output_dir / output_filename(job.id, self._clock()),
            overlays=list(job.overlays),
        )
        return await self.assembler.mux(request)

    # ------------------------------------------------------------------
    # Terminal-state helpers
    # ------------------------------------------------------------------

    def _fail(self, job: Job, kind: str, message: str) -> None:
        job.status = JobStatus.FAILED
        job.error_kind = kind
        job.error = message
        job.finished_at = self._clock()
        logger.error("Job %s failed at %s (%s): %s", job.id, job.stage.value, kind, message)
        self._remove_partials(job)

    def _remove_partials(self, job: Job) -> None:
        if not job.output_dir.is_dir():
            return
        for pattern in _PARTIAL_PATTERNS:
            for path in job.output_dir.glob(pattern):
                logger.debug("Removing partial artifact %s", path)
                path.unlink(missing_ok=True)
        job.overlays = []

    def _write_record(self, job: Job) -> None:
        if not job.output_dir.is_dir():
            return
        record = job.output_dir / JOB_RECORD
        with open(record, "w", encoding="utf-8") as f:
            json.dump(job.to_dict(), f, indent=2, ensure_ascii=False)
