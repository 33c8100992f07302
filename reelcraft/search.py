"""Media search backends: Google Custom Search for stills, Tenor for GIFs."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from reelcraft.config import GoogleSearchConfig, TenorConfig
from reelcraft.errors import (
    MediaValidationError,
    UpstreamRejectedError,
    transport_error,
    upstream_error,
)
from reelcraft.models import SearchResult

logger = logging.getLogger(__name__)

_GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
_TENOR_BASE_URL = "https://tenor.googleapis.com/v2"
_BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

MAX_RESULTS = 10
MIN_IMAGE_WIDTH = 400
MIN_IMAGE_HEIGHT = 300

BLOCKED_DOMAINS = (
    "lookaside.instagram.com",
    "instagram.com",
    "fbcdn.net",
    "pinterest.com",
    "pinimg.com",
    "tiktok.com",
    "twitter.com",
    "x.com",
    "shutterstock.com",
    "gettyimages.com",
    "alamy.com",
    "dreamstime.com",
    "istockphoto.com",
    "123rf.com",
    "depositphotos.com",
    "stock.adobe.com",
)


def is_blocked_domain(url: str) -> bool:
    lower = url.lower()
    return any(domain in lower for domain in BLOCKED_DOMAINS)


def is_image_content_type(content_type: str) -> bool:
    return content_type.strip().lower().startswith("image/")


class _HttpSearcher:
    """Shared client plumbing: one search client and one download client."""

    vendor = ""

    def __init__(
        self,
        timeout: float,
        download_timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )
        self._download_client = httpx.AsyncClient(
            timeout=httpx.Timeout(download_timeout, connect=10.0),
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()
        await self._download_client.aclose()

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise transport_error(self.vendor, exc) from exc
        if response.status_code != 200:
            raise upstream_error(self.vendor, response)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamRejectedError(
                f"{self.vendor}: invalid JSON response", status_code=200, body=response.text[:500],
            ) from exc

    async def _fetch(self, url: str, headers: dict[str, str] | None = None) -> httpx.Response:
        try:
            response = await self._download_client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise transport_error(self.vendor, exc) from exc
        if response.status_code != 200:
            raise upstream_error(self.vendor, response)
        return response


class GoogleImageSearch(_HttpSearcher):
    """Still-image search over the Google Custom Search JSON API.

    Usage::

        async with GoogleImageSearch(config.google_search) as search:
            results = await search.search("octopus", 5)
            data = await search.download(results[0].url)
    """

    vendor = "google_search"

    def __init__(
        self,
        config: GoogleSearchConfig,
        base_url: str = _GOOGLE_SEARCH_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config.timeout, config.download_timeout, transport)
        self.config = config
        self.base_url = base_url

    async def search(self, query: str, count: int) -> list[SearchResult]:
        """Return up to ``count`` image results for ``query``.

        Results from blocked domains are dropped. Images smaller than 400x300
        are skipped unless that leaves nothing, in which case the size filter
        is ignored.
        """
        count = max(min(count, MAX_RESULTS), 1)
        params = {
            "key": self.config.api_key,
            "cx": self.config.engine_id,
            "q": query,
            "searchType": "image",
            "num": str(min(count * 3, MAX_RESULTS)),
            "safe": "active",
            "imgSize": "xlarge",
            "imgType": "photo",
        }
        data = await self._get_json(self.base_url, params)

        candidates = [
            _google_result(item)
            for item in data.get("items") or []
            if not is_blocked_domain(str(item.get("link", "")))
        ]
        sized = [
            r for r in candidates
            if r.width >= MIN_IMAGE_WIDTH and r.height >= MIN_IMAGE_HEIGHT
        ]
        results = (sized or candidates)[:count]
        logger.debug("Image search %r: %d results (%d large enough)", query, len(results), len(sized))
        return results

    async def download(self, url: str) -> bytes:
        response = await self._fetch(url, headers={"User-Agent": _BROWSER_UA})
        content_type = response.headers.get("content-type", "")
        if not is_image_content_type(content_type):
            raise MediaValidationError(f"invalid content type {content_type!r} for {url}")
        return response.content


def _google_result(item: dict) -> SearchResult:
    image = item.get("image") or {}
    return SearchResult(
        title=str(item.get("title", "")),
        url=str(item.get("link", "")),
        thumb_url=str(image.get("thumbnailLink", "")),
        width=int(image.get("width") or 0),
        height=int(image.get("height") or 0),
    )


class TenorGifSearch(_HttpSearcher):
    """Animated GIF search over the Tenor v2 API."""

    vendor = "tenor"

    def __init__(
        self,
        config: TenorConfig,
        base_url: str = _TENOR_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config.timeout, config.download_timeout, transport)
        self.config = config
        self.base_url = base_url.rstrip("/")

    async def search(self, query: str, count: int) -> list[SearchResult]:
        if count <= 0:
            count = MAX_RESULTS
        params = {
            "key": self.config.api_key,
            "q": query,
            "limit": str(count),
            "media_filter": "gif,tinygif",
            "contentfilter": "medium",
        }
        data = await self._get_json(f"{self.base_url}/search", params)

        results = []
        for item in data.get("results") or []:
            result = _tenor_result(item)
            if result is not None:
                results.append(result)
        logger.debug("GIF search %r: %d results", query, len(results))
        return results

    async def download(self, url: str) -> bytes:
        response = await self._fetch(url)
        return response.content


def _tenor_result(item: dict) -> SearchResult | None:
    formats = item.get("media_formats") or {}
    media = None
    for key in ("gif", "tinygif"):
        candidate = formats.get(key)
        if candidate and len(candidate.get("dims") or []) >= 2:
            media = candidate
            break
    if media is None:
        return None

    preview = ""
    for key in ("tinygif", "nanogif", "gif"):
        if key in formats:
            preview = formats[key].get("url", "")
            break

    return SearchResult(
        title=str(item.get("title", "")),
        url=str(media.get("url", "")),
        thumb_url=preview,
        width=int(media["dims"][0]),
        height=int(media["dims"][1]),
    )
