import asyncio

import pytest

from helpers import timings
from reelcraft.errors import EmptyInputError
from reelcraft.models import SpeechResult
from reelcraft.stitcher import AudioStitcher, rebase_timings, sniff_audio_extension

WAV = b"RIFF" + b"\x00" * 40
MP3 = b"ID3" + b"\x00" * 40


def _segments():
    return [
        SpeechResult(audio=WAV, timings=timings(("First", 0, 0.5), ("part", 0.5, 1.0))),
        SpeechResult(audio=WAV, timings=timings(("second", 0, 0.5), ("part", 0.5, 1.0))),
    ]


def test_rebase_two_segments():
    rebased, duration = rebase_timings(_segments())

    assert [(t.word, t.start, t.end) for t in rebased] == [
        ("First", 0, 0.5),
        ("part", 0.5, 1.0),
        ("second", 1.0, 1.5),
        ("part", 1.5, 2.0),
    ]
    assert duration == 2.0


def test_rebase_keeps_speakers():
    segments = [
        SpeechResult(audio=WAV, timings=timings(("hi", 0, 0.4, "Adam"))),
        SpeechResult(audio=WAV, timings=timings(("yo", 0, 0.3, "Bella"))),
    ]
    rebased, _ = rebase_timings(segments)
    assert [t.speaker for t in rebased] == ["Adam", "Bella"]


def test_stitch_concatenates_with_stream_copy(tmp_path, fake_ffmpeg):
    result = asyncio.run(AudioStitcher(tmp_path).stitch(_segments()))

    assert len(result.timings) == 4
    assert result.duration == 2.0
    starts = [t.start for t in result.timings]
    assert starts == sorted(starts)
    assert result.data.startswith(b"ID3")

    (cmd,) = fake_ffmpeg.calls
    assert cmd[cmd.index("-f") + 1] == "concat"
    assert "copy" in cmd
    assert cmd[-1].endswith("stitched.wav")
    # temp directory is gone after stitching
    assert list(tmp_path.iterdir()) == []


def test_stitch_mixed_formats_reencodes(tmp_path, fake_ffmpeg):
    segments = [
        SpeechResult(audio=WAV, timings=timings(("a", 0, 1))),
        SpeechResult(audio=MP3, timings=timings(("b", 0, 1))),
    ]
    asyncio.run(AudioStitcher(tmp_path).stitch(segments))

    (cmd,) = fake_ffmpeg.calls
    assert "libmp3lame" in cmd
    assert cmd[-1].endswith("stitched.mp3")


def test_single_segment_is_passthrough(tmp_path, fake_ffmpeg):
    only = SpeechResult(audio=b"raw-bytes", timings=timings(("solo", 0, 0.7)))
    result = asyncio.run(AudioStitcher(tmp_path).stitch([only]))

    assert result.data == b"raw-bytes"
    assert result.timings == only.timings
    assert result.duration == 0.7
    assert fake_ffmpeg.calls == []


def test_empty_input_rejected(tmp_path):
    with pytest.raises(EmptyInputError):
        asyncio.run(AudioStitcher(tmp_path).stitch([]))


@pytest.mark.parametrize("data, ext", [
    (WAV, ".wav"),
    (MP3, ".mp3"),
    (b"\xff\xfb\x90\x00", ".mp3"),
    (b"OggS....", ".bin"),
])
def test_sniff_audio_extension(data, ext):
    assert sniff_audio_extension(data) == ext
