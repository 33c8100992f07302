"""Shared fakes for the test suite."""

from __future__ import annotations

from pathlib import Path

from reelcraft.errors import MediaValidationError
from reelcraft.models import SearchResult, WordTiming

PNG_HEADER = b"\x89PNG\r\n\x1a\n"
GIF_HEADER = b"GIF89a"


def png_bytes(size: int = 20_000) -> bytes:
    return PNG_HEADER + b"\x00" * size


def gif_bytes(size: int = 8_000) -> bytes:
    return GIF_HEADER + b"\x00" * size


def timings(*words, speaker: str = "") -> list[WordTiming]:
    """Build timings from ``(word, start, end[, speaker])`` tuples."""
    result = []
    for item in words:
        word, start, end = item[:3]
        who = item[3] if len(item) > 3 else speaker
        result.append(WordTiming(word=word, start=start, end=end, speaker=who))
    return result


class FakeFFmpeg:
    """Stand-in for ``process.run_process``: records commands, writes outputs."""

    def __init__(self, probe_output: str = "120.0", fail_on: str | None = None, partial_output: bool = False):
        self.probe_output = probe_output
        self.fail_on = fail_on
        self.partial_output = partial_output
        self.calls: list[list[str]] = []
        self.labels: list[str] = []
        self.subtitles: list[str] = []

    async def __call__(self, cmd, label=""):
        from reelcraft.errors import MuxError

        self.calls.append(list(cmd))
        self.labels.append(label)
        if self.fail_on and self.fail_on in label:
            if self.partial_output:
                Path(cmd[-1]).write_bytes(b"\x00" * 16)
            raise MuxError(f"{label} failed (exit 1): boom", returncode=1, stderr="boom")
        if "ffprobe" in cmd[0]:
            return self.probe_output

        output = Path(cmd[-1])
        for sub in output.parent.glob("subs_*.ass"):
            self.subtitles.append(sub.read_text(encoding="utf-8"))
        output.write_bytes(b"ID3" + b"\x00" * 64)
        return ""

    def calls_labelled(self, label: str) -> list[list[str]]:
        return [cmd for cmd, lab in zip(self.calls, self.labels) if lab == label]


class FakeSearcher:
    """In-memory searcher mapping URLs to payloads."""

    def __init__(self, payloads: dict[str, bytes] | None = None, results: list[SearchResult] | None = None):
        self.payloads = payloads or {}
        self.results = results
        self.queries: list[str] = []
        self.downloads: list[str] = []

    async def search(self, query, count):
        self.queries.append(query)
        if self.results is not None:
            return self.results[:count]
        return [SearchResult(title=url, url=url) for url in self.payloads][:count]

    async def download(self, url):
        self.downloads.append(url)
        data = self.payloads.get(url)
        if data is None:
            raise MediaValidationError(f"no payload for {url}")
        return data
