"""Final mux: background clip + narration + overlays + burned-in subtitles.

Uses FFmpeg to produce the vertical short-form video in one pass.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path

from reelcraft import process
from reelcraft.config import VideoConfig
from reelcraft.models import ImageOverlay

logger = logging.getLogger(__name__)

MUSIC_EXTENSIONS = (".mp3", ".wav", ".m4a")


@dataclass
class MuxRequest:
    background: Path
    audio_path: Path
    subtitle_path: Path
    duration: float
    output_path: Path
    overlays: list[ImageOverlay] = field(default_factory=list)


def output_filename(job_id: str, timestamp: float) -> str:
    return f"video_{job_id}_{int(timestamp)}.mp4"


def random_start(clip_duration: float, needed: float, rng: random.Random) -> float:
    """Random offset into the clip that still leaves ``needed`` seconds."""
    if clip_duration <= needed:
        return 0.0
    return rng.uniform(0.0, clip_duration - needed)


def _escape_filter_path(path: Path) -> str:
    text = str(path).replace("\\", "/")
    for ch in ("'", ":", ",", "[", "]", ";"):
        text = text.replace(ch, "\\" + ch)
    return text


class VideoAssembler:
    """Builds and runs the FFmpeg command for one video."""

    def __init__(
        self,
        config: VideoConfig,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        rng: random.Random | None = None,
        music_dir: Path | None = None,
    ) -> None:
        self.config = config
        self.music_dir = music_dir
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.width, self.height = config.size
        self._rng = rng or random.Random()

    async def probe_duration(self, path: Path) -> float:
        out = await process.run_process(
            [
                self.ffprobe, "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                str(path),
            ],
            label="ffprobe",
        )
        try:
            return float(out.strip())
        except ValueError:
            logger.warning("Could not parse duration of %s: %r", path, out.strip())
            return 0.0

    def limit_overlays(self, overlays: list[ImageOverlay]) -> list[ImageOverlay]:
        limit = self.config.max_overlays
        if limit >= 0 and len(overlays) > limit:
            logger.info("Limiting overlays from %d to %d", len(overlays), limit)
            return overlays[:limit]
        return overlays

    def select_music_track(self) -> Path | None:
        """Random ``.mp3/.wav/.m4a`` from the music directory, if any."""
        if self.music_dir is None or not self.music_dir.is_dir():
            return None
        tracks = sorted(
            p for p in self.music_dir.iterdir()
            if p.is_file() and p.suffix.lower() in MUSIC_EXTENSIONS
        )
        if not tracks:
            return None
        return self._rng.choice(tracks)

    def build_audio_filter(self, music_path: Path | None, duration: float) -> str:
        """Narration mixed with the background clip audio and optional music.

        Inputs are ``0`` background, ``1`` narration and ``2`` music.
        """
        cfg = self.config
        sources: list[str] = []
        parts: list[str] = []
        if cfg.background_volume > 0:
            parts.append(f"[0:a]volume={cfg.background_volume:.2f}[bga]")
            sources.append("[bga]")
        parts.append("[1:a]volume=1.0[voice]")
        sources.append("[voice]")
        if music_path is not None:
            fade_out_start = max(duration - cfg.music_fade_out, 0.0)
            parts.append(
                f"[2:a]volume={cfg.music_volume:.2f},"
                f"afade=t=in:st=0:d={cfg.music_fade_in:.2f},"
                f"afade=t=out:st={fade_out_start:.2f}:d={cfg.music_fade_out:.2f}[music]"
            )
            sources.append("[music]")

        if len(sources) == 1:
            return "[1:a]volume=1.0[a]"
        mix = f"amix=inputs={len(sources)}:duration=longest"
        if music_path is not None:
            mix += ":normalize=0"
        parts.append(f"{''.join(sources)}{mix}[a]")
        return ";".join(parts)

    def build_filter_complex(
        self,
        subtitle_path: Path,
        overlays: list[ImageOverlay],
        music_path: Path | None = None,
        duration: float = 0.0,
    ) -> str:
        """Filter graph: scale/crop background, burn subtitles, stack overlays.

        Inputs are ``0`` background, ``1`` narration, ``2`` music when a track
        is used, then the overlay media.
        """
        w, h = self.width, self.height
        base = (
            f"[0:v]scale={w}:{h}:force_original_aspect_ratio=increase,crop={w}:{h},"
            f"ass={_escape_filter_path(subtitle_path)}"
        )
        audio = self.build_audio_filter(music_path, duration)

        if not overlays:
            return f"{base}[v];{audio}"

        first_overlay = 3 if music_path is not None else 2
        parts = [f"{base}[base]"]
        last = "base"
        for i, ov in enumerate(overlays):
            input_idx = first_overlay + i
            img, out = f"img{i}", f"v{i}"
            parts.append(
                f"[{input_idx}:v]setpts=PTS-STARTPTS+{ov.start:.2f}/TB,"
                f"scale={ov.width}:{ov.height},format=rgba[{img}]"
            )
            parts.append(
                f"[{last}][{img}]overlay=(W-w)/2:100:"
                f"enable='between(t,{ov.start:.2f},{ov.end:.2f})'[{out}]"
            )
            last = out
        parts.append(f"[{last}]null[v]")
        parts.append(audio)
        return ";".join(parts)

    def build_ffmpeg_args(
        self,
        request: MuxRequest,
        overlays: list[ImageOverlay],
        start: float,
        loop_background: bool,
        music_path: Path | None = None,
    ) -> list[str]:
        video_duration = request.duration + self.config.end_buffer

        cmd = [self.ffmpeg, "-y"]
        if loop_background:
            cmd += ["-stream_loop", "-1"]
        cmd += [
            "-ss", f"{start:.2f}",
            "-t", f"{video_duration:.2f}",
            "-i", str(request.background),
            "-i", str(request.audio_path),
        ]
        if music_path is not None:
            cmd += ["-i", str(music_path)]
        for ov in overlays:
            display = ov.end - ov.start + 0.5
            if ov.animated:
                cmd += ["-ignore_loop", "0"]
            else:
                cmd += ["-loop", "1"]
            cmd += ["-t", f"{ov.start + display:.2f}", "-i", str(ov.path)]

        graph = self.build_filter_complex(request.subtitle_path, overlays, music_path, request.duration)
        cmd += [
            "-filter_complex", graph,
            "-map", "[v]",
            "-map", "[a]",
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "23",
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", "192k",
            "-ar", "44100",
            "-t", f"{video_duration:.2f}",
            "-movflags", "+faststart",
            str(request.output_path),
        ]
        return cmd

    async def mux(self, request: MuxRequest) -> Path:
        """Render the final video and return its path.

        A partially written output file is removed when ffmpeg fails or the
        mux is cancelled.

        Raises:
            MuxError: If ffprobe or ffmpeg fails.
        """
        clip_duration = await self.probe_duration(request.background)
        needed = request.duration + self.config.end_buffer
        loop_background = 0 < clip_duration < needed
        start = 0.0 if loop_background else random_start(clip_duration, needed, self._rng)
        logger.info(
            "Background %s: %.1fs, start at %.2fs%s",
            request.background.name, clip_duration, start, " (looped)" if loop_background else "",
        )

        overlays = self.limit_overlays(list(request.overlays))
        music = self.select_music_track()
        if music is not None:
            logger.info("Background music: %s", music.name)
        cmd = self.build_ffmpeg_args(request, overlays, start, loop_background, music)

        request.output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Muxing %s with %d overlay(s)", request.output_path.name, len(overlays))
        try:
            await process.run_process(cmd, label="ffmpeg mux")
        except BaseException:
            request.output_path.unlink(missing_ok=True)
            raise

        logger.info("Built video: %s (%.1f KB)", request.output_path,
                    request.output_path.stat().st_size / 1024)
        return request.output_path
