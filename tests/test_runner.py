import json

import pytest
from click.testing import CliRunner

from reelcraft.runner import cli, load_cues
from reelcraft.errors import InvalidInputError
from reelcraft.models import MediaType


@pytest.fixture
def project(tmp_path):
    (tmp_path / "backgrounds").mkdir()
    (tmp_path / "backgrounds" / "city.mp4").write_bytes(b"\x00" * 16)
    (tmp_path / "config.yaml").write_text(
        "tts:\n  provider: stub\n"
        "video:\n  background_dir: backgrounds\n  conversation_mode: false\n",
        encoding="utf-8",
    )
    (tmp_path / "script.txt").write_text("Cities never sleep. Lights stay on all night.", encoding="utf-8")
    return tmp_path


def _invoke(project, *args):
    return CliRunner().invoke(cli, ["run", "--config", str(project / "config.yaml"), *args])


def test_run_builds_video(project, fake_ffmpeg):
    out = project / "out"
    result = _invoke(project, "--script", str(project / "script.txt"), "--output-dir", str(out))

    assert result.exit_code == 0, result.output
    (job_dir,) = out.iterdir()
    record = json.loads((job_dir / "job.json").read_text(encoding="utf-8"))
    assert record["status"] == "completed"
    assert list(job_dir.glob("video_*.mp4"))


def test_default_output_dir_is_relative_to_config(project, fake_ffmpeg):
    result = _invoke(project, "--script", str(project / "script.txt"))
    assert result.exit_code == 0, result.output
    assert (project / "output").is_dir()


def test_missing_script_file_exits_1(project, fake_ffmpeg):
    result = _invoke(project, "--script", str(project / "nope.txt"))
    assert result.exit_code == 1


def test_no_script_or_topic_exits_1(project, fake_ffmpeg):
    assert _invoke(project).exit_code == 1


def test_missing_config_exits_1(tmp_path):
    result = CliRunner().invoke(cli, ["run", "--config", str(tmp_path / "missing.yaml"), "--topic", "x"])
    assert result.exit_code == 1


def test_mux_failure_exits_2(project, fake_ffmpeg):
    fake_ffmpeg.fail_on = "mux"
    result = _invoke(project, "--script", str(project / "script.txt"), "--output-dir", str(project / "out"))
    assert result.exit_code == 2


def test_cues_file(tmp_path):
    path = tmp_path / "cues.yaml"
    path.write_text(
        "visuals:\n"
        "  - keyword: cities\n"
        "    search_query: night skyline\n"
        "  - keyword: lights\n"
        "    type: gif\n",
        encoding="utf-8",
    )
    cues = load_cues(str(path))
    assert [(c.keyword, c.search_query, c.type) for c in cues] == [
        ("cities", "night skyline", MediaType.IMAGE),
        ("lights", "lights", MediaType.GIF),
    ]

    path.write_text("just: a mapping\n", encoding="utf-8")
    with pytest.raises(InvalidInputError):
        load_cues(str(path))
