"""Background clip providers: a local directory or a cached list of URLs."""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from reelcraft.errors import InvalidInputError, transport_error, upstream_error

logger = logging.getLogger(__name__)

CLIP_EXTENSIONS = (".mp4", ".mov", ".mkv")
_DOWNLOAD_TIMEOUT = 300.0


class BackgroundProvider(Protocol):
    async def pick_random_clip(self) -> Path: ...


class LocalBackgroundProvider:
    """Picks a random video file from a directory."""

    def __init__(self, directory: Path, rng: random.Random | None = None) -> None:
        self.directory = Path(directory)
        self._rng = rng or random.Random()

    def list_clips(self) -> list[Path]:
        if not self.directory.is_dir():
            raise InvalidInputError(f"Background directory not found: {self.directory}")
        return sorted(
            p for p in self.directory.iterdir()
            if p.is_file() and p.suffix.lower() in CLIP_EXTENSIONS
        )

    async def pick_random_clip(self) -> Path:
        clips = self.list_clips()
        if not clips:
            raise InvalidInputError(f"No video clips found in {self.directory}")
        clip = self._rng.choice(clips)
        logger.info("Selected background clip %s (of %d)", clip.name, len(clips))
        return clip


class RemoteBackgroundProvider:
    """Picks a random clip URL and caches the download on disk.

    Usage::

        async with RemoteBackgroundProvider(urls, cache_dir) as provider:
            clip = await provider.pick_random_clip()
    """

    def __init__(
        self,
        urls: list[str],
        cache_dir: Path,
        rng: random.Random | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.urls = [u for u in urls if Path(urlparse(u).path).suffix.lower() in CLIP_EXTENSIONS]
        self.cache_dir = Path(cache_dir)
        self._rng = rng or random.Random()
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(_DOWNLOAD_TIMEOUT, connect=10.0),
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> RemoteBackgroundProvider:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def cache_path(self, url: str) -> Path:
        return self.cache_dir / Path(urlparse(url).path).name

    async def pick_random_clip(self) -> Path:
        if not self.urls:
            raise InvalidInputError("No background clip URLs configured")
        url = self._rng.choice(self.urls)
        output = self.cache_path(url)
        if output.exists() and output.stat().st_size > 0:
            logger.info("Using cached background clip %s", output.name)
            return output
        return await self._download(url, output)

    async def _download(self, url: str, output: Path) -> Path:
        output.parent.mkdir(parents=True, exist_ok=True)
        partial = output.with_suffix(output.suffix + ".part")

        logger.info("Downloading background %s -> %s", url, output)
        completed = False
        try:
            async with self._client.stream("GET", url) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise upstream_error("background", response)
                with open(partial, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=65536):
                        f.write(chunk)
            completed = True
        except httpx.HTTPError as exc:
            raise transport_error("background", exc) from exc
        finally:
            if not completed:
                partial.unlink(missing_ok=True)

        partial.replace(output)
        logger.info("Downloaded: %s (%.1f MB)", output, output.stat().st_size / 1_048_576)
        return output
