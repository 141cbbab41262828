from __future__ import annotations

import re

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient

from slugcast.config import Settings
from slugcast.main import create_app

ADMIN = "admin-secret"
DOWNLOAD = "download-secret"
STREAM = "stream-secret"

MEDIA = bytes(range(250)) * 2  # 500 bytes
_RANGE = re.compile(r"bytes=(\d+)-(\d*)")


async def _streamed(body: bytes):
    # A lazily produced body, like a real network response
    yield body


class FakeUpstream:
    """Serves MEDIA for every URL, honouring simple single ranges."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_override: int | None = None
        self.content_type = "video/webm"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_override is not None:
            return httpx.Response(self.status_override, content=b"nope")
        if "unreachable" in request.url.host:
            raise httpx.ConnectError("connection refused", request=request)

        match = _RANGE.fullmatch(request.headers.get("Range", ""))
        if match:
            start = int(match.group(1))
            end = int(match.group(2)) if match.group(2) else len(MEDIA) - 1
            body = MEDIA[start : end + 1]
            return httpx.Response(
                206,
                headers={
                    "Content-Type": self.content_type,
                    "Content-Length": str(len(body)),
                    "Content-Range": f"bytes {start}-{end}/{len(MEDIA)}",
                    "Accept-Ranges": "bytes",
                },
                content=_streamed(body),
            )
        return httpx.Response(
            200,
            headers={
                "Content-Type": self.content_type,
                "Content-Length": str(len(MEDIA)),
                "Accept-Ranges": "bytes",
            },
            content=_streamed(MEDIA),
        )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        admin_token=ADMIN,
        download_token=DOWNLOAD,
        stream_token=STREAM,
        session_max_age=3600,
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def client(settings, upstream):
    server = fakeredis.FakeServer()

    async def redis_factory(url: str):
        return fakeredis.FakeAsyncRedis(server=server, decode_responses=True)

    def http_client_factory(_settings: Settings) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(upstream))

    app = create_app(settings, redis_factory=redis_factory, http_client_factory=http_client_factory)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def create_link(client):
    def _create(name: str, url: str = "https://cdn.example/src.mp4", link_type: str = "download") -> dict:
        resp = client.post(
            "/generate",
            json={"token": ADMIN, "originalUrl": url, "movieName": name, "linkType": link_type},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _create
