from __future__ import annotations

import pytest

from helpers import FakeFFmpeg


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    fake = FakeFFmpeg()
    monkeypatch.setattr("reelcraft.process.run_process", fake)
    return fake
