"""Gallery collaborator tests."""

import base64
import json

import httpx
import pytest

from hibiscus.models.stats import UsageStats
from hibiscus.services.gallery import GalleryClient, InMemoryGallery


def make_gallery(handler) -> GalleryClient:
    return GalleryClient("http://gallery.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_unreachable_server_disables_client():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    gallery = make_gallery(handler)

    assert await gallery.check_connection() is False
    assert await gallery.save("image", "fox", {}, b"png") is None
    assert await gallery.list_items() == []
    assert await gallery.remove("abc") is False
    await gallery.close()


@pytest.mark.asyncio
async def test_save_uploads_base64_blob():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "GET":
            return httpx.Response(200, json={"images": 0})
        body = json.loads(request.content)
        return httpx.Response(200, json={"id": "item-1", "type": body["type"]})

    gallery = make_gallery(handler)
    await gallery.check_connection()

    item = await gallery.save("image", "a red fox", {"seed": 1}, b"\x89PNG")

    assert item == {"id": "item-1", "type": "image"}
    upload = json.loads(seen[-1].content)
    assert seen[-1].url.path == "/api/gallery"
    assert base64.b64decode(upload["blob"]) == b"\x89PNG"
    assert upload["prompt"] == "a red fox"
    await gallery.close()


@pytest.mark.asyncio
async def test_server_errors_are_not_fatal():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path == "/api/stats":
            return httpx.Response(200, json={})
        return httpx.Response(500, text="boom")

    gallery = make_gallery(handler)
    await gallery.check_connection()

    assert await gallery.save("image", "fox", {}, b"png") is None
    assert await gallery.list_items() == []
    assert await gallery.update_stats(UsageStats(images=1)) is False
    await gallery.close()


@pytest.mark.asyncio
async def test_in_memory_gallery_round_trip():
    gallery = InMemoryGallery()

    item = await gallery.save("video", "waves", {"duration": 4}, b"mp4")

    assert item["type"] == "video"
    assert item["size"] == 3
    assert await gallery.list_items() == [item]
    assert await gallery.remove(item["id"])
    assert not await gallery.remove(item["id"])
    assert await gallery.list_items() == []
