"""Join per-speaker speech segments into one narration track.

Audio is concatenated with FFmpeg's concat demuxer; word timings of every
segment after the first are shifted onto a single monotonic timeline.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path

from reelcraft import process
from reelcraft.errors import EmptyInputError
from reelcraft.models import SpeechResult, StitchedAudio, WordTiming

logger = logging.getLogger(__name__)


def sniff_audio_extension(data: bytes) -> str:
    """Pick a file extension from the leading magic bytes."""
    if data[:4] == b"RIFF":
        return ".wav"
    if data[:3] == b"ID3":
        return ".mp3"
    if len(data) >= 2 and data[0] == 0xFF and data[1] & 0xE0 == 0xE0:
        return ".mp3"
    return ".bin"


def rebase_timings(segments: Sequence[SpeechResult]) -> tuple[list[WordTiming], float]:
    """Shift each segment's timings by the summed length of the ones before it.

    Returns the concatenated timings and the total duration (the sum of every
    segment's last word end).
    """
    rebased: list[WordTiming] = []
    offset = 0.0
    for seg in segments:
        for t in seg.timings:
            rebased.append(WordTiming(
                word=t.word,
                start=t.start + offset,
                end=t.end + offset,
                speaker=t.speaker,
            ))
        if seg.timings:
            offset += seg.timings[-1].end
    return rebased, offset


class AudioStitcher:
    """Concatenates speech segments inside a job's working directory."""

    def __init__(self, temp_dir: Path, ffmpeg: str = "ffmpeg") -> None:
        self.temp_dir = Path(temp_dir)
        self.ffmpeg = ffmpeg

    async def stitch(self, segments: Sequence[SpeechResult]) -> StitchedAudio:
        """Join ``segments`` in order.

        Raises:
            EmptyInputError: If ``segments`` is empty.
            MuxError: If FFmpeg fails.
        """
        if not segments:
            raise EmptyInputError("No audio segments to stitch")

        if len(segments) == 1:
            only = segments[0]
            return StitchedAudio(data=only.audio, timings=only.timings, duration=only.duration)

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        tmpdir = tempfile.mkdtemp(prefix="stitch_", dir=self.temp_dir)
        try:
            data = await self._concat(segments, Path(tmpdir))
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)

        timings, duration = rebase_timings(segments)
        logger.info(
            "Stitched %d segments: %d words, %.2fs, %d bytes",
            len(segments), len(timings), duration, len(data),
        )
        return StitchedAudio(data=data, timings=tuple(timings), duration=duration)

    async def _concat(self, segments: Sequence[SpeechResult], tmp: Path) -> bytes:
        extensions = [sniff_audio_extension(seg.audio) for seg in segments]
        paths = [
            (tmp / f"seg_{i:03d}{ext}").resolve()
            for i, ext in enumerate(extensions)
        ]

        await asyncio.gather(*(
            asyncio.to_thread(path.write_bytes, seg.audio)
            for path, seg in zip(paths, segments)
        ))

        concat_list = tmp / "concat.txt"
        with open(concat_list, "w", encoding="utf-8") as f:
            for path in paths:
                f.write(f"file '{path}'\n")

        # Stream copy only works when every segment shares one known container.
        same_format = len(set(extensions)) == 1 and extensions[0] != ".bin"
        if same_format:
            output = tmp / f"stitched{extensions[0]}"
            codec_args = ["-c", "copy"]
        else:
            output = tmp / "stitched.mp3"
            codec_args = ["-c:a", "libmp3lame", "-b:a", "192k"]

        cmd = [
            self.ffmpeg, "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(concat_list),
            *codec_args,
            str(output),
        ]
        await process.run_process(cmd, label="ffmpeg concat")
        return output.read_bytes()
