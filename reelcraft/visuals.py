"""Place topic-relevant images and GIFs on the narration timeline.

For every visual cue an anchor word is located in the word timings, media is
fetched through a pluggable searcher, and a display window is allotted that
ends with the anchor speaker's turn (bounded by ``max_display_time``).
Overlapping windows are resolved afterwards by truncating earlier overlays.
"""

from __future__ import annotations

import asyncio
import dataclasses
import io
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import httpx
from PIL import Image, UnidentifiedImageError

from reelcraft.config import VisualsConfig
from reelcraft.errors import KeywordMissError, MediaValidationError, UpstreamError
from reelcraft.keywords import find_anchor, speaker_segment_end
from reelcraft.models import ImageOverlay, SearchResult, VisualCue, WordTiming

logger = logging.getLogger(__name__)

CANDIDATE_COUNT = 5
MIN_IMAGE_BYTES = 10_000
MIN_GIF_BYTES = 5_000
MIN_ON_SCREEN = 0.5
_MIN_HEADER_BYTES = 100
MAX_STILL_PIXELS = 40_000_000


class MediaSearcher(Protocol):
    """Search + download capability of an image or GIF backend."""

    async def search(self, query: str, count: int) -> list[SearchResult]: ...

    async def download(self, url: str) -> bytes: ...


def detect_image_format(data: bytes) -> str:
    """Extension for JPEG / PNG / WebP magic bytes, or "" if unknown."""
    if len(data) < 12:
        return ""
    if data.startswith(b"\xff\xd8\xff"):
        return ".jpg"
    if data.startswith(b"\x89PNG"):
        return ".png"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return ".webp"
    return ""


def is_valid_gif(data: bytes) -> bool:
    if len(data) < _MIN_HEADER_BYTES:
        return False
    return data.startswith(b"GIF87a") or data.startswith(b"GIF89a")


def reencode_still(data: bytes) -> bytes | None:
    """PNG copy of a still image Pillow can decode, or None.

    Images declaring more than ``MAX_STILL_PIXELS`` are refused before any
    pixel data is loaded.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.width * img.height > MAX_STILL_PIXELS:
                logger.debug("Refusing %dx%d %s image", img.width, img.height, img.format)
                return None
            out = io.BytesIO()
            img.convert("RGBA").save(out, format="PNG")
    except Image.DecompressionBombError as exc:
        logger.debug("Refusing oversized image: %s", exc)
        return None
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        logger.debug("Pillow could not decode candidate: %s", exc)
        return None
    return out.getvalue()


def validate_media(data: bytes, animated: bool) -> tuple[bytes, str]:
    """Check downloaded bytes; return the bytes to save and their extension.

    JPEG, PNG and WebP stills are kept as downloaded. Other formats Pillow
    can decode are re-encoded to PNG so the file matches its extension.

    Raises:
        MediaValidationError: On a bad header or a file below the minimum size.
    """
    if animated:
        if not is_valid_gif(data):
            raise MediaValidationError(f"not a GIF ({len(data)} bytes)")
        if len(data) < MIN_GIF_BYTES:
            raise MediaValidationError(f"GIF too small ({len(data)} bytes)")
        return data, ".gif"

    if len(data) < _MIN_HEADER_BYTES:
        raise MediaValidationError(f"not a supported image ({len(data)} bytes)")
    if len(data) < MIN_IMAGE_BYTES:
        raise MediaValidationError(f"image too small ({len(data)} bytes)")
    ext = detect_image_format(data)
    if ext:
        return data, ext
    converted = reencode_still(data)
    if converted is None:
        raise MediaValidationError(f"not a supported image ({len(data)} bytes)")
    return converted, ".png"


def _anchor(timings: Sequence[WordTiming], cue: VisualCue, start_from: int) -> int:
    index = find_anchor(timings, cue.keyword, start_from)
    if index < 0:
        raise KeywordMissError(f"keyword {cue.keyword!r} not found in narration")
    return index


def enforce_constraints(overlays: Sequence[ImageOverlay], min_gap: float) -> list[ImageOverlay]:
    """Truncate overlays so each one ends ``min_gap`` before the next starts.

    Overlays are sorted by start time first. No overlay is dropped: an earlier
    overlay keeps at least 0.5s on screen even when that violates the gap.
    """
    result = sorted((dataclasses.replace(o) for o in overlays), key=lambda o: o.start)
    if len(result) <= 1:
        return result

    for prev, nxt in zip(result, result[1:]):
        if nxt.start < prev.end + min_gap:
            new_end = nxt.start - min_gap
            if new_end < prev.start + MIN_ON_SCREEN:
                new_end = prev.start + MIN_ON_SCREEN
            logger.debug("Truncating overlay %s: end %.2f -> %.2f", prev.path.name, prev.end, new_end)
            prev.end = new_end

    for i, o in enumerate(result):
        logger.info("Final overlay %d: %s [%.2f - %.2f]", i, o.path.name, o.start, o.end)
    return result


class VisualFetcher:
    """Fetch overlays for a list of cues.

    Usage::

        fetcher = VisualFetcher(image_search, gif_search, config.visuals)
        overlays = await fetcher.fetch(cues, timings, job_dir)
    """

    def __init__(
        self,
        image_search: MediaSearcher | None,
        gif_search: MediaSearcher | None,
        config: VisualsConfig,
    ) -> None:
        self.image_search = image_search
        self.gif_search = gif_search
        self.config = config

    async def fetch(
        self,
        cues: Sequence[VisualCue],
        timings: Sequence[WordTiming],
        output_dir: Path,
    ) -> list[ImageOverlay]:
        if self.image_search is None and self.gif_search is None:
            logger.warning("No search backends configured, skipping visuals")
            return []
        if not cues:
            logger.info("No visual cues provided")
            return []

        logger.info("Processing %d visual cue(s) against %d word timings", len(cues), len(timings))
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        overlays: list[ImageOverlay] = []
        start_from = 0
        for index, cue in enumerate(cues):
            try:
                anchor = _anchor(timings, cue, start_from)
            except KeywordMissError as exc:
                logger.warning("Dropping cue: %s", exc)
                continue
            start_from = anchor + 1
            logger.debug(
                "Cue %d %r anchored at word %d (%.2fs)",
                index, cue.keyword, anchor, timings[anchor].start,
            )

            overlay = await self._place(index, cue, anchor, timings, output_dir)
            if overlay is None:
                logger.warning("No usable media for cue %r (query %r)", cue.keyword, cue.search_query)
                continue
            logger.info(
                "Placed %s for %r at %.2f-%.2fs",
                overlay.path.name, cue.keyword, overlay.start, overlay.end,
            )
            overlays.append(overlay)

        logger.info("Visual fetch complete: %d/%d cues placed", len(overlays), len(cues))
        return enforce_constraints(overlays, self.config.min_gap)

    def _searcher_for(self, cue: VisualCue) -> tuple[MediaSearcher | None, bool]:
        if cue.animated and self.gif_search is not None:
            return self.gif_search, True
        return self.image_search, False

    async def _place(
        self,
        index: int,
        cue: VisualCue,
        anchor: int,
        timings: Sequence[WordTiming],
        output_dir: Path,
    ) -> ImageOverlay | None:
        searcher, animated = self._searcher_for(cue)
        if searcher is None:
            logger.debug("No searcher for %s cue %r", cue.type.value, cue.keyword)
            return None

        media = await self._download_first_valid(searcher, cue.search_query, animated)
        if media is None:
            return None
        data, ext = media

        path = output_dir / f"image_{index}{ext}"
        await asyncio.to_thread(path.write_bytes, data)

        start = timings[anchor].start
        end = speaker_segment_end(timings, anchor)
        max_display = self.config.max_display_time
        if max_display > 0 and end - start > max_display:
            end = start + max_display
        if end <= start:
            end = start + MIN_ON_SCREEN

        return ImageOverlay(
            path=path,
            start=start,
            end=end,
            width=self.config.image_width,
            height=self.config.image_height,
            animated=animated,
        )

    async def _download_first_valid(
        self, searcher: MediaSearcher, query: str, animated: bool,
    ) -> tuple[bytes, str] | None:
        try:
            results = await searcher.search(query, CANDIDATE_COUNT)
        except (UpstreamError, httpx.HTTPError) as exc:
            logger.warning("Search failed for %r: %s", query, exc)
            return None
        if not results:
            logger.warning("No search results for %r", query)
            return None

        for i, result in enumerate(results[:CANDIDATE_COUNT]):
            try:
                data = await searcher.download(result.url)
                data, ext = validate_media(data, animated)
            except (UpstreamError, MediaValidationError, httpx.HTTPError) as exc:
                logger.debug("Candidate %d rejected (%s): %s", i, result.url, exc)
                continue
            logger.debug("Candidate %d accepted: %s (%d bytes)", i, result.url, len(data))
            return data, ext
        return None
