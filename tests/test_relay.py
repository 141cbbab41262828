import httpx
import pytest

from slugcast.errors import UpstreamError
from slugcast.models import LinkEntry
from slugcast.relay import content_type_for, relay

from .conftest import MEDIA

pytestmark = pytest.mark.anyio

ENTRY = LinkEntry(slug="my-movie.mp4", source_url="https://cdn.example/src.mp4", display_name="My Movie.mp4")


async def _body(response) -> bytes:
    return b"".join([chunk async for chunk in response.body_iterator])


async def test_range_is_passed_through(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        response = await relay(client, ENTRY, "bytes=0-99", "play")
        body = await _body(response)

    assert upstream.requests[0].headers["Range"] == "bytes=0-99"
    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 0-99/500"
    assert response.headers["content-length"] == "100"
    assert response.headers["accept-ranges"] == "bytes"
    assert body == MEDIA[:100]


async def test_no_range_is_synthesized(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        response = await relay(client, ENTRY, None, "download")
        body = await _body(response)

    assert "Range" not in upstream.requests[0].headers
    assert upstream.requests[0].headers["Accept-Encoding"] == "identity"
    assert response.status_code == 200
    assert body == MEDIA


async def test_download_mode_headers(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        response = await relay(client, ENTRY, None, "download")
        await _body(response)

    assert response.headers["content-type"] == "application/octet-stream"
    assert response.headers["content-disposition"] == 'attachment; filename="My Movie.mp4"'
    assert "access-control-allow-origin" not in response.headers


async def test_playback_headers(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        played = await relay(client, ENTRY, None, "play")
        await _body(played)
        streamed = await relay(client, ENTRY, None, "stream")
        await _body(streamed)

    assert played.headers["content-type"] == "video/webm"
    assert played.headers["content-disposition"] == "inline"
    assert played.headers["access-control-allow-origin"] == "*"
    assert streamed.headers["content-type"] == "video/mp4"


def test_content_type_policy():
    assert content_type_for("download", "video/webm") == "application/octet-stream"
    assert content_type_for("play", "video/x-matroska") == "video/x-matroska"
    assert content_type_for("play", "application/octet-stream") == "video/mp4"
    assert content_type_for("play", None) == "video/mp4"
    assert content_type_for("stream", "video/webm") == "video/mp4"


@pytest.mark.parametrize("status", [403, 404, 503])
async def test_upstream_status_is_surfaced(upstream, status):
    upstream.status_override = status
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        with pytest.raises(UpstreamError) as exc:
            await relay(client, ENTRY, None, "download")
    assert exc.value.status_code == status


async def test_bodyless_upstream_is_an_error(upstream):
    upstream.status_override = 204
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        with pytest.raises(UpstreamError) as exc:
            await relay(client, ENTRY, None, "download")
    assert exc.value.status_code == 502


async def test_network_failure_is_500(upstream):
    entry = ENTRY.model_copy(update={"source_url": "https://unreachable.example/a.mp4"})
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        with pytest.raises(UpstreamError) as exc:
            await relay(client, entry, None, "download")
    assert exc.value.status_code == 500
    assert len(upstream.requests) == 1


async def test_early_close_releases_upstream():
    pulled = []

    async def chunks():
        for i in range(100):
            pulled.append(i)
            yield b"x" * 1024

    def handler(request):
        return httpx.Response(200, headers={"Content-Type": "video/mp4"}, content=chunks())

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await relay(client, ENTRY, None, "play")
        iterator = response.body_iterator
        first = await iterator.__anext__()
        await iterator.aclose()

    assert first == b"x" * 1024
    # Only what the consumer asked for was read from upstream
    assert len(pulled) < 100


async def test_non_ascii_filename_gets_ascii_fallback(upstream):
    entry = ENTRY.model_copy(update={"display_name": "映画 movie.mp4"})
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        response = await relay(client, entry, None, "download")
        await _body(response)

    assert response.headers["content-disposition"] == (
        "attachment; filename=\"movie.mp4\"; filename*=UTF-8''%E6%98%A0%E7%94%BB%20movie.mp4"
    )


async def test_upstream_closed_when_response_cannot_be_built(upstream, monkeypatch):
    opened = []

    def handler(request):
        response = upstream(request)
        opened.append(response)
        return response

    def broken_headers(*args):
        raise RuntimeError("boom")

    monkeypatch.setattr("slugcast.relay.response_headers", broken_headers)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(RuntimeError):
            await relay(client, ENTRY, None, "download")

    assert opened[0].is_closed
