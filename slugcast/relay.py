"""
Streaming relay from a registered source URL to the client.

One upstream GET per request. The client's Range header is forwarded
verbatim and the upstream status, Content-Length, Content-Range and
Accept-Ranges come back unchanged, so seeking works end to end.

The body is piped chunk by chunk: the next upstream read happens only
after the previous chunk was handed to the ASGI server, and the upstream
response is closed on every exit path (normal end, client disconnect,
upstream failure mid-stream).
"""
from __future__ import annotations

import logging
from typing import AsyncIterator, Literal, Optional
from urllib.parse import quote

import httpx
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from slugcast.auth import slugify
from slugcast.errors import UpstreamError
from slugcast.models import LinkEntry

logger = logging.getLogger(__name__)

Mode = Literal["download", "play", "stream"]

DOWNLOAD_CONTENT_TYPE = "application/octet-stream"
VIDEO_CONTENT_TYPE = "video/mp4"
PASSTHROUGH_HEADERS = ("Content-Length", "Content-Range", "Accept-Ranges")
BODYLESS_STATUSES = (204, 205)


def build_http_client(connect_timeout: float = 10.0, read_timeout: float = 60.0) -> httpx.AsyncClient:
    timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


def content_type_for(mode: Mode, upstream_type: Optional[str]) -> str:
    if mode == "download":
        return DOWNLOAD_CONTENT_TYPE
    if mode == "play" and upstream_type and upstream_type.lower().startswith("video/"):
        return upstream_type
    return VIDEO_CONTENT_TYPE


def content_disposition_for(mode: Mode, filename: str) -> str:
    if mode != "download":
        return "inline"
    try:
        filename.encode("ascii")
    except UnicodeEncodeError:
        # Header values must be latin-1; send an ASCII name plus the RFC 6266 form
        fallback = slugify(filename) or "download"
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"
    return f'attachment; filename="{filename}"'


def response_headers(mode: Mode, entry: LinkEntry, upstream: httpx.Response) -> dict[str, str]:
    headers = {
        name: upstream.headers[name]
        for name in PASSTHROUGH_HEADERS
        if name in upstream.headers
    }
    headers["Content-Type"] = content_type_for(mode, upstream.headers.get("Content-Type"))
    headers["Content-Disposition"] = content_disposition_for(mode, entry.filename)
    if mode != "download":
        headers["Access-Control-Allow-Origin"] = "*"
    return headers


async def _pipe(slug: str, upstream: httpx.Response) -> AsyncIterator[bytes]:
    finished = False
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
        finished = True
    except httpx.HTTPError as exc:
        # Headers are already sent; all we can do is cut the body short
        finished = True
        logger.warning("Upstream failed mid-stream for %s: %s", slug, exc)
    finally:
        if not finished:
            logger.info("Client went away during %s; closing upstream", slug)
        await upstream.aclose()


async def open_upstream(
    client: httpx.AsyncClient, entry: LinkEntry, range_header: Optional[str]
) -> httpx.Response:
    """Send the upstream GET and return the response with its body unread."""
    # identity keeps the relayed bytes equal to what Content-Length describes
    headers = {"Accept-Encoding": "identity"}
    if range_header:
        headers["Range"] = range_header
    request = client.build_request("GET", entry.source_url, headers=headers)
    try:
        upstream = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        logger.error("Upstream request for %s could not be made: %s", entry.slug, exc)
        raise UpstreamError("Error proxying the file.", status_code=500) from exc

    if not upstream.is_success:
        await upstream.aclose()
        logger.warning("Upstream for %s answered %s", entry.slug, upstream.status_code)
        raise UpstreamError(status_code=upstream.status_code)

    if upstream.status_code in BODYLESS_STATUSES or upstream.headers.get("Content-Length") == "0":
        await upstream.aclose()
        logger.warning("Upstream for %s returned no body", entry.slug)
        raise UpstreamError(status_code=502)

    return upstream


async def relay(
    client: httpx.AsyncClient,
    entry: LinkEntry,
    range_header: Optional[str],
    mode: Mode,
) -> StreamingResponse:
    upstream = await open_upstream(client, entry, range_header)
    try:
        headers = response_headers(mode, entry, upstream)
        return StreamingResponse(
            _pipe(entry.slug, upstream),
            status_code=upstream.status_code,
            headers=headers,
            background=BackgroundTask(upstream.aclose),
        )
    except BaseException:
        await upstream.aclose()
        raise
