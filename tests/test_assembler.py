import asyncio
import random
from pathlib import Path

import pytest

from reelcraft.assembler import MuxRequest, VideoAssembler, output_filename, random_start
from reelcraft.config import VideoConfig
from reelcraft.errors import MuxError
from reelcraft.models import ImageOverlay


def _overlay(i, start, end, animated=False):
    ext = ".gif" if animated else ".png"
    return ImageOverlay(path=Path(f"/job/image_{i}{ext}"), start=start, end=end,
                        width=800, height=600, animated=animated)


def _request(tmp_path, overlays=(), duration=10.0):
    return MuxRequest(
        background=tmp_path / "bg.mp4",
        audio_path=tmp_path / "audio.mp3",
        subtitle_path=tmp_path / "subs_job.ass",
        duration=duration,
        output_path=tmp_path / "video_job_1700000000.mp4",
        overlays=list(overlays),
    )


def test_output_filename():
    assert output_filename("abc123", 1700000000.9) == "video_abc123_1700000000.mp4"


def test_random_start_leaves_room():
    rng = random.Random(7)
    for _ in range(50):
        start = random_start(60.0, 11.5, rng)
        assert 0.0 <= start <= 60.0 - 11.5
    assert random_start(5.0, 11.5, rng) == 0.0


def test_filter_graph_without_overlays_still_burns_subtitles():
    graph = VideoAssembler(VideoConfig()).build_filter_complex(Path("/job/subs.ass"), [])

    assert "ass=/job/subs.ass" in graph
    assert "overlay=" not in graph
    assert "scale=1080:1920:force_original_aspect_ratio=increase,crop=1080:1920" in graph
    assert graph.endswith(
        "[0:a]volume=0.10[bga];[1:a]volume=1.0[voice];[bga][voice]amix=inputs=2:duration=longest[a]"
    )
    assert "[v]" in graph


def test_filter_graph_chains_overlays():
    overlays = [_overlay(0, 1.0, 3.0), _overlay(1, 5.0, 7.5, animated=True)]
    graph = VideoAssembler(VideoConfig()).build_filter_complex(Path("/job/subs.ass"), overlays)

    assert "[2:v]setpts=PTS-STARTPTS+1.00/TB,scale=800:600,format=rgba[img0]" in graph
    assert "[base][img0]overlay=(W-w)/2:100:enable='between(t,1.00,3.00)'[v0]" in graph
    assert "[v0][img1]overlay=(W-w)/2:100:enable='between(t,5.00,7.50)'[v1]" in graph
    assert "[v1]null[v]" in graph


def test_filter_path_is_escaped():
    graph = VideoAssembler(VideoConfig()).build_filter_complex(Path("C:/odd,dir/subs.ass"), [])
    assert "ass=C\\:/odd\\,dir/subs.ass" in graph


def test_resolution_from_config():
    graph = VideoAssembler(VideoConfig(resolution="720x1280")).build_filter_complex(Path("s.ass"), [])
    assert "scale=720:1280" in graph
    assert "crop=720:1280" in graph


def test_overlay_inputs(tmp_path):
    assembler = VideoAssembler(VideoConfig())
    overlays = [_overlay(0, 1.0, 3.0), _overlay(1, 5.0, 7.0, animated=True)]
    cmd = assembler.build_ffmpeg_args(_request(tmp_path, overlays), overlays, 12.0, False)

    still = cmd.index("/job/image_0.png")
    assert cmd[still - 5:still] == ["-loop", "1", "-t", "3.50", "-i"]
    gif = cmd.index("/job/image_1.gif")
    assert cmd[gif - 5:gif] == ["-ignore_loop", "0", "-t", "7.50", "-i"]
    assert cmd[cmd.index("-ss") + 1] == "12.00"
    assert "-stream_loop" not in cmd
    assert cmd[-1].endswith(".mp4")
    assert "libx264" in cmd and "aac" in cmd


def test_mux_caps_overlays_and_loops_short_background(tmp_path, fake_ffmpeg):
    fake_ffmpeg.probe_output = "4.0\n"
    assembler = VideoAssembler(VideoConfig(max_overlays=2, end_buffer=1.5))
    overlays = [_overlay(i, i * 3.0, i * 3.0 + 1.0) for i in range(4)]

    output = asyncio.run(assembler.mux(_request(tmp_path, overlays, duration=10.0)))

    assert output.exists()
    (probe,) = fake_ffmpeg.calls_labelled("ffprobe")
    assert probe[-1].endswith("bg.mp4")
    (cmd,) = fake_ffmpeg.calls_labelled("ffmpeg mux")
    assert cmd[cmd.index("-stream_loop") + 1] == "-1"
    assert cmd[cmd.index("-ss") + 1] == "0.00"
    assert cmd[cmd.index("-t") + 1] == "11.50"
    graph = cmd[cmd.index("-filter_complex") + 1]
    assert graph.count("overlay=") == 2


def test_mux_picks_offset_inside_long_background(tmp_path, fake_ffmpeg):
    fake_ffmpeg.probe_output = "100.0"
    assembler = VideoAssembler(VideoConfig(), rng=random.Random(1))

    asyncio.run(assembler.mux(_request(tmp_path, duration=10.0)))

    (cmd,) = fake_ffmpeg.calls_labelled("ffmpeg mux")
    start = float(cmd[cmd.index("-ss") + 1])
    assert 0.0 <= start <= 100.0 - 11.5
    assert "-stream_loop" not in cmd


def test_audio_graph_with_music_mixes_three_inputs():
    assembler = VideoAssembler(VideoConfig(music_volume=0.2, music_fade_in=1.0, music_fade_out=2.0))
    audio = assembler.build_audio_filter(Path("/music/calm.mp3"), 10.0)

    assert audio == (
        "[0:a]volume=0.10[bga];[1:a]volume=1.0[voice];"
        "[2:a]volume=0.20,afade=t=in:st=0:d=1.00,afade=t=out:st=8.00:d=2.00[music];"
        "[bga][voice][music]amix=inputs=3:duration=longest:normalize=0[a]"
    )


def test_audio_graph_fade_out_never_starts_before_zero():
    audio = VideoAssembler(VideoConfig(music_fade_out=5.0)).build_audio_filter(Path("m.mp3"), 3.0)
    assert "afade=t=out:st=0.00:d=5.00" in audio


def test_audio_graph_without_background_audio():
    assembler = VideoAssembler(VideoConfig(background_volume=0))
    assert assembler.build_audio_filter(None, 10.0) == "[1:a]volume=1.0[a]"
    with_music = assembler.build_audio_filter(Path("m.mp3"), 10.0)
    assert "[0:a]" not in with_music
    assert with_music.endswith("[voice][music]amix=inputs=2:duration=longest:normalize=0[a]")


def test_music_shifts_overlay_inputs(tmp_path):
    assembler = VideoAssembler(VideoConfig())
    overlays = [_overlay(0, 1.0, 3.0)]
    music = tmp_path / "calm.mp3"

    cmd = assembler.build_ffmpeg_args(_request(tmp_path, overlays), overlays, 0.0, False, music)

    inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
    assert inputs == [str(tmp_path / "bg.mp4"), str(tmp_path / "audio.mp3"), str(music), "/job/image_0.png"]
    graph = cmd[cmd.index("-filter_complex") + 1]
    assert "[3:v]setpts=PTS-STARTPTS+1.00/TB" in graph
    assert "[2:a]volume=0.15" in graph


def test_select_music_track(tmp_path):
    music_dir = tmp_path / "music"
    music_dir.mkdir()
    (music_dir / "notes.txt").write_text("not audio")
    assert VideoAssembler(VideoConfig(), music_dir=music_dir).select_music_track() is None
    assert VideoAssembler(VideoConfig()).select_music_track() is None

    (music_dir / "calm.MP3").write_bytes(b"ID3")
    (music_dir / "drive.m4a").write_bytes(b"\x00")
    picked = {
        VideoAssembler(VideoConfig(), rng=random.Random(seed), music_dir=music_dir).select_music_track().name
        for seed in range(20)
    }
    assert picked <= {"calm.MP3", "drive.m4a"}
    assert picked


def test_mux_uses_music_from_directory(tmp_path, fake_ffmpeg):
    music_dir = tmp_path / "music"
    music_dir.mkdir()
    (music_dir / "calm.mp3").write_bytes(b"ID3")
    assembler = VideoAssembler(VideoConfig(), music_dir=music_dir)

    asyncio.run(assembler.mux(_request(tmp_path)))

    (cmd,) = fake_ffmpeg.calls_labelled("ffmpeg mux")
    assert str(music_dir / "calm.mp3") in cmd
    assert "amix=inputs=3" in cmd[cmd.index("-filter_complex") + 1]


def test_failed_mux_removes_partial_output(tmp_path, fake_ffmpeg):
    fake_ffmpeg.fail_on = "mux"
    fake_ffmpeg.partial_output = True
    request = _request(tmp_path)

    with pytest.raises(MuxError):
        asyncio.run(VideoAssembler(VideoConfig()).mux(request))

    assert fake_ffmpeg.calls_labelled("ffmpeg mux")
    assert not request.output_path.exists()
