"""
Redis data-access layer for the link registry.

Key schema:
  {namespace}  → Hash  (field = slug, value = JSON {"source_url", "display_name"})

Older deployments stored the bare source URL as the hash value; such
fields are read back with no display name.

Every operation is a single Redis command, so the registry never does
read-modify-write and needs no locking. Two writers racing on the same
slug end with whichever HSET Redis applied last.
"""
from __future__ import annotations

import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError

from slugcast.auth import slugify
from slugcast.errors import NotFoundError, ValidationError
from slugcast.models import LinkEntry, StoredLink

logger = logging.getLogger(__name__)


async def init_redis(url: str) -> aioredis.Redis:
    """Create and verify the Redis connection. Crash loudly on failure."""
    client = aioredis.from_url(url, decode_responses=True)
    try:
        await client.ping()
    except Exception as exc:
        await client.aclose()
        raise RuntimeError(f"Cannot connect to Redis at {url}: {exc}") from exc
    return client


async def close_redis(client: Optional[aioredis.Redis]) -> None:
    if client is not None:
        await client.aclose()


def _decode(slug: str, raw: str) -> LinkEntry:
    try:
        data = json.loads(raw)
    except ValueError:
        data = raw
    if isinstance(data, str):
        # Legacy shape: the value is the source URL itself
        return LinkEntry(slug=slug, source_url=data)
    stored = StoredLink.model_validate(data)
    return LinkEntry(slug=slug, source_url=stored.source_url, display_name=stored.display_name)


class LinkRegistry:
    """Owns the lifecycle of slug → source URL entries."""

    def __init__(self, redis: aioredis.Redis, namespace: str = "links"):
        self.redis = redis
        self.namespace = namespace

    async def create(
        self, seed: str, source_url: str, display_name: Optional[str] = None
    ) -> str:
        """Store source_url under slugify(seed), replacing any previous entry."""
        source_url = (source_url or "").strip()
        if not source_url:
            raise ValidationError("A source URL is required.")
        slug = slugify(seed)
        if not slug:
            raise ValidationError("The name does not produce a usable slug.")

        name = (display_name or seed or "").strip() or None
        value = StoredLink(source_url=source_url, display_name=name).model_dump_json()
        await self.redis.hset(self.namespace, slug, value)
        logger.info("Stored link %s", slug)
        return slug

    async def resolve(self, slug: str) -> LinkEntry:
        raw = await self.redis.hget(self.namespace, slug)
        if raw is None:
            raise NotFoundError()
        try:
            return _decode(slug, raw)
        except PydanticValidationError:
            logger.error("Link entry %s is malformed", slug)
            raise NotFoundError()

    async def delete(self, slug: str) -> None:
        removed = await self.redis.hdel(self.namespace, slug)
        if removed:
            logger.info("Deleted link %s", slug)

    async def list(self) -> list[LinkEntry]:
        """Return all entries ordered by slug."""
        raw_entries = await self.redis.hgetall(self.namespace)
        entries: list[LinkEntry] = []
        for slug in sorted(raw_entries):
            try:
                entries.append(_decode(slug, raw_entries[slug]))
            except PydanticValidationError:
                logger.warning("Skipping malformed link entry %s", slug)
        return entries
