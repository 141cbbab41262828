from __future__ import annotations

import re
from urllib.parse import unquote, urlparse

_RELEASE_TAGS = re.compile(
    r"\b(?:480p|720p|1080p|2160p|4k|x264|x265|h264|h265|hevc|web-?dl|webrip|bluray|brrip|hdrip|dvdrip)\b.*$",
    flags=re.IGNORECASE,
)
_YEAR = re.compile(r"\b((?:19|20)\d{2})\b")


def guess_title(url: str | None) -> str:
    """Best-effort display name from the last path segment of a URL."""
    raw = str(url or "").strip()
    if not raw:
        return ""
    path = urlparse(raw).path if "://" in raw else raw
    base = unquote(path.rstrip("/").rsplit("/", 1)[-1])
    match = re.search(r"\.([a-z0-9]{2,5})$", base, flags=re.IGNORECASE)
    ext = match.group(1).lower() if match else ""
    stem = base[: match.start()] if match else base

    cleaned = re.sub(r"[._]+", " ", stem)
    cleaned = _RELEASE_TAGS.sub("", cleaned)
    cleaned = re.sub(r"[\[\]()]", " ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" -")
    if not cleaned:
        return ""

    year = _YEAR.search(cleaned)
    if year:
        name = cleaned[: year.start()].strip(" -")
        if name:
            cleaned = f"{name} ({year.group(1)})"
    return f"{cleaned}.{ext}" if ext else cleaned
