import asyncio

import httpx
import pytest

from helpers import png_bytes
from reelcraft.config import GoogleSearchConfig, TenorConfig
from reelcraft.errors import MediaValidationError, UpstreamRejectedError, UpstreamUnavailableError
from reelcraft.search import GoogleImageSearch, TenorGifSearch, is_blocked_domain


def _item(link, width=1200, height=900):
    return {
        "title": link.rsplit("/", 1)[-1],
        "link": link,
        "image": {"thumbnailLink": link + "?thumb", "width": width, "height": height},
    }


def _google(handler):
    config = GoogleSearchConfig(api_key="key", engine_id="cx")
    return GoogleImageSearch(config, transport=httpx.MockTransport(handler))


def _search(searcher, query, count):
    async def scenario():
        async with searcher:
            return await searcher.search(query, count)
    return asyncio.run(scenario())


def _download(searcher, url):
    async def scenario():
        async with searcher:
            return await searcher.download(url)
    return asyncio.run(scenario())


def test_google_search_params_and_filters():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"items": [
            _item("https://i.pinimg.com/a.jpg"),
            _item("https://example.org/small.jpg", 200, 150),
            _item("https://example.org/big.jpg"),
            _item("https://example.net/huge.png", 2000, 1500),
        ]})

    results = _search(_google(handler), "golden gate bridge", 2)

    assert [r.url for r in results] == ["https://example.org/big.jpg", "https://example.net/huge.png"]
    assert results[0].thumb_url == "https://example.org/big.jpg?thumb"
    assert (results[1].width, results[1].height) == (2000, 1500)

    params = requests[0].url.params
    assert params["q"] == "golden gate bridge"
    assert params["num"] == "6"
    assert params["searchType"] == "image"
    assert params["safe"] == "active"
    assert params["imgSize"] == "xlarge"
    assert params["imgType"] == "photo"
    assert params["cx"] == "cx"


def test_google_num_is_capped_at_ten():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    assert _search(_google(handler), "x", 5) == []
    assert requests[0].url.params["num"] == "10"


def test_google_falls_back_to_small_images():
    def handler(request):
        return httpx.Response(200, json={"items": [
            _item("https://example.org/s1.jpg", 100, 100),
            _item("https://www.shutterstock.com/s2.jpg", 100, 100),
            _item("https://example.org/s3.jpg", 0, 0),
        ]})

    results = _search(_google(handler), "x", 5)
    assert [r.url for r in results] == ["https://example.org/s1.jpg", "https://example.org/s3.jpg"]


def test_google_errors_are_classified():
    with pytest.raises(UpstreamRejectedError):
        _search(_google(lambda r: httpx.Response(403, text="forbidden")), "x", 1)
    with pytest.raises(UpstreamUnavailableError):
        _search(_google(lambda r: httpx.Response(503, text="busy")), "x", 1)


def test_google_download_checks_content_type():
    def handler(request):
        assert "Mozilla" in request.headers["user-agent"]
        if request.url.path.endswith(".jpg"):
            return httpx.Response(200, content=png_bytes(), headers={"content-type": "image/png"})
        return httpx.Response(200, content=b"<html/>", headers={"content-type": "text/html"})

    assert _download(_google(handler), "https://example.org/a.jpg") == png_bytes()
    with pytest.raises(MediaValidationError):
        _download(_google(handler), "https://example.org/page")


def test_blocked_domains():
    assert is_blocked_domain("https://LOOKASIDE.instagram.com/x.jpg")
    assert is_blocked_domain("https://media.gettyimages.com/photo.jpg")
    assert not is_blocked_domain("https://upload.wikimedia.org/cat.jpg")


def _tenor(handler):
    return TenorGifSearch(TenorConfig(api_key="tkey"), transport=httpx.MockTransport(handler))


def test_tenor_search_prefers_gif_format():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"results": [
            {
                "id": "1", "title": "wow",
                "media_formats": {
                    "gif": {"url": "https://media.tenor.com/wow.gif", "dims": [498, 280]},
                    "tinygif": {"url": "https://media.tenor.com/wow-tiny.gif", "dims": [220, 124]},
                },
            },
            {
                "id": "2", "title": "tiny only",
                "media_formats": {"tinygif": {"url": "https://media.tenor.com/t.gif", "dims": [220, 124]}},
            },
            {"id": "3", "title": "no dims", "media_formats": {"gif": {"url": "https://x/y.gif", "dims": []}}},
        ]})

    results = _search(_tenor(handler), "wow", 8)

    assert [r.url for r in results] == ["https://media.tenor.com/wow.gif", "https://media.tenor.com/t.gif"]
    assert results[0].thumb_url == "https://media.tenor.com/wow-tiny.gif"
    assert (results[0].width, results[0].height) == (498, 280)
    params = requests[0].url.params
    assert requests[0].url.path == "/v2/search"
    assert params["media_filter"] == "gif,tinygif"
    assert params["contentfilter"] == "medium"
    assert params["limit"] == "8"
