"""Ad creative cache.

WHAT:
    Read-through cache of Meta ad creative metadata in `ad_creatives`.
    A cached row is served while it is younger than the TTL (7 days);
    older rows are refetched from the Graph API, parsed into a flat record
    and upserted.

WHY:
    - Creatives rarely change, but the ad-level board shows one per row and
      the Graph API is rate limited, so refetching on every report is wasteful
    - A stale copy is better than nothing when the refetch fails (expired
      token, deleted creative, throttling)

REFERENCES:
    - https://developers.facebook.com/docs/marketing-api/reference/ad-creative
    - adboard/models.py::CreativeRecord
    - adboard/services/snapshot_store.py::get_creative_ids
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from adboard.errors import AdboardError
from adboard.models import CreativeRecord, CreativeTypeEnum
from adboard.services.meta_graph_client import MetaGraphClient
from adboard.services.snapshot_store import SnapshotStore
from adboard.utils.dates import utcnow

logger = logging.getLogger(__name__)


DEFAULT_TTL_DAYS = 7
DEFAULT_BATCH_SIZE = 10

CREATIVE_FIELDS = ",".join([
    "id",
    "name",
    "body",
    "title",
    "thumbnail_url",
    "image_url",
    "image_hash",
    "video_id",
    "call_to_action",
    "object_story_spec",
    "asset_feed_spec",
    "object_story_id",
    "effective_object_story_id",
])

VIDEO_FIELDS = "source,picture,length,thumbnails.limit(1){uri,width,height,scale,is_preferred}"


def classify_creative(data: Dict[str, Any]) -> CreativeTypeEnum:
    """video > carousel > image > link > other."""
    spec = data.get("object_story_spec") or {}
    link_data = spec.get("link_data") or {}
    photo_data = spec.get("photo_data") or {}
    video_data = spec.get("video_data") or {}

    if video_data.get("video_id") or data.get("video_id"):
        return CreativeTypeEnum.video
    if link_data.get("child_attachments"):
        return CreativeTypeEnum.carousel
    if photo_data or data.get("image_hash") or data.get("image_url"):
        return CreativeTypeEnum.image

    # Advantage+ creatives carry their assets in asset_feed_spec
    ad_formats = (data.get("asset_feed_spec") or {}).get("ad_formats") or []
    if "SINGLE_VIDEO" in ad_formats and "SINGLE_IMAGE" not in ad_formats:
        return CreativeTypeEnum.video
    if "CAROUSEL" in ad_formats and "SINGLE_IMAGE" not in ad_formats:
        return CreativeTypeEnum.carousel
    if data.get("asset_feed_spec"):
        return CreativeTypeEnum.image

    if link_data.get("link"):
        return CreativeTypeEnum.link
    return CreativeTypeEnum.other


def _first_text(entries: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    if not entries:
        return None
    return entries[0].get("text")


def parse_creative(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a Graph creative payload into CreativeRecord columns.

    `videos` is left empty; the caller fills it from the video lookup.
    """
    spec = data.get("object_story_spec") or {}
    link_data = spec.get("link_data") or {}
    photo_data = spec.get("photo_data") or {}
    video_data = spec.get("video_data") or {}
    asset_feed = data.get("asset_feed_spec") or {}

    primary_text = (
        data.get("body")
        or link_data.get("message")
        or video_data.get("message")
        or photo_data.get("message")
        or _first_text(asset_feed.get("bodies"))
    )
    headline = (
        data.get("title")
        or link_data.get("name")
        or video_data.get("title")
        or _first_text(asset_feed.get("titles"))
    )
    description = link_data.get("description") or _first_text(asset_feed.get("descriptions"))

    image_url = data.get("image_url") or link_data.get("picture") or photo_data.get("url")
    image_hash = data.get("image_hash") or photo_data.get("image_hash")
    if not image_hash and asset_feed.get("images"):
        image_hash = asset_feed["images"][0].get("hash")

    call_to_action = (
        data.get("call_to_action")
        or link_data.get("call_to_action")
        or video_data.get("call_to_action")
    )
    if not call_to_action and asset_feed.get("call_to_actions"):
        call_to_action = asset_feed["call_to_actions"][0]

    child_attachments = [
        {
            "name": child.get("name"),
            "description": child.get("description"),
            "image_url": child.get("image_url"),
            "image_hash": child.get("image_hash"),
            "link": child.get("link"),
            "video_id": child.get("video_id"),
        }
        for child in link_data.get("child_attachments") or []
    ]

    return {
        "creative_id": data["id"],
        "name": data.get("name"),
        "primary_text": primary_text,
        "headline": headline,
        "description": description,
        "body": data.get("body"),
        "title": data.get("title"),
        "thumbnail_url": data.get("thumbnail_url") or image_url,
        "image_url": image_url,
        "image_hash": image_hash,
        "video_id": video_data.get("video_id") or data.get("video_id"),
        "videos": [],
        "child_attachments": child_attachments,
        "call_to_action": call_to_action,
        "creative_type": classify_creative(data),
        "object_story_spec": spec or None,
        "object_story_id": data.get("effective_object_story_id") or data.get("object_story_id"),
        "raw_data": data,
    }


def _largest_thumbnail(video: Dict[str, Any]) -> Optional[str]:
    thumbnails = (video.get("thumbnails") or {}).get("data") or []
    if not thumbnails:
        return video.get("picture")
    best = max(thumbnails, key=lambda t: t.get("scale") or t.get("width") or 0)
    return best.get("uri") or video.get("picture")


class CreativeCache:
    """TTL cache of creatives backed by the ad_creatives table.

    Usage:
        ```python
        cache = CreativeCache(db, graph)
        record = await cache.get("120210000000", client_id, token)
        ```
    """

    def __init__(
        self,
        db: Session,
        graph: MetaGraphClient,
        ttl_days: int = DEFAULT_TTL_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.graph = graph
        self.ttl = timedelta(days=ttl_days)
        self._clock = clock

    def is_fresh(self, record: CreativeRecord) -> bool:
        if record.last_fetched_at is None:
            return False
        return self._clock() - record.last_fetched_at < self.ttl

    def get_cached(self, creative_id: str) -> Optional[CreativeRecord]:
        return self.db.get(CreativeRecord, creative_id)

    async def _fetch_videos(self, video_id: str, access_token: str, fallback_thumbnail: Optional[str]) -> List[Dict[str, Any]]:
        try:
            video = await self.graph.fetch_page(f"/{video_id}", {"fields": VIDEO_FIELDS}, access_token)
        except AdboardError as e:
            logger.warning("[CREATIVE_CACHE] Video details for %s unavailable: %s", video_id, e)
            return []
        return [{
            "id": video_id,
            "url": video.get("source"),
            "thumbnail_url": _largest_thumbnail(video) or fallback_thumbnail,
            "duration": video.get("length"),
        }]

    def _save(self, client_id: Optional[str], parsed: Dict[str, Any]) -> CreativeRecord:
        record = self.get_cached(parsed["creative_id"])
        if record is None:
            record = CreativeRecord(creative_id=parsed["creative_id"])
            self.db.add(record)
        for field, value in parsed.items():
            if field != "creative_id":
                setattr(record, field, value)
        if client_id:
            record.client_id = client_id
        record.last_fetched_at = self._clock()
        self.db.commit()
        self.db.refresh(record)
        return record

    async def get(
        self,
        creative_id: str,
        client_id: Optional[str],
        access_token: Optional[str],
        force_refresh: bool = False,
    ) -> Optional[CreativeRecord]:
        """Return the creative, refetching when missing, expired or forced.

        On fetch failure the cached row is returned even if stale; None when
        nothing was ever cached.
        """
        if not creative_id:
            return None

        cached = self.get_cached(creative_id)
        if cached is not None and not force_refresh and self.is_fresh(cached):
            logger.debug("[CREATIVE_CACHE] Cache hit for %s", creative_id)
            return cached

        try:
            data = await self.graph.fetch_page(f"/{creative_id}", {"fields": CREATIVE_FIELDS}, access_token)
            parsed = parse_creative(data)
            if parsed["creative_type"] == CreativeTypeEnum.video and parsed["video_id"]:
                parsed["videos"] = await self._fetch_videos(
                    parsed["video_id"], access_token, parsed["thumbnail_url"]
                )
            record = self._save(client_id, parsed)
        except AdboardError as e:
            self.db.rollback()
            logger.warning(
                "[CREATIVE_CACHE] Fetch failed for %s (%s); serving %s",
                creative_id, e, "stale copy" if cached is not None else "nothing",
            )
            return self.get_cached(creative_id)

        logger.info("[CREATIVE_CACHE] Cached creative %s (%s)", creative_id, record.creative_type.value)
        return record

    async def get_many(
        self,
        creative_ids: Iterable[str],
        client_id: Optional[str],
        access_token: Optional[str],
        force_refresh: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> Dict[str, Optional[CreativeRecord]]:
        """Sequential batches; creatives inside a batch are fetched concurrently."""
        unique_ids = list(dict.fromkeys(cid for cid in creative_ids if cid))
        results: Dict[str, Optional[CreativeRecord]] = {}

        for i in range(0, len(unique_ids), batch_size):
            batch = unique_ids[i:i + batch_size]
            records = await asyncio.gather(
                *(self.get(cid, client_id, access_token, force_refresh) for cid in batch)
            )
            results.update(zip(batch, records))

        return results

    async def fetch_and_save_for_client(
        self,
        client_id: str,
        start: date,
        end: date,
        access_token: Optional[str],
    ) -> Dict[str, Any]:
        """Force-refresh every creative referenced by the client's snapshots in range."""
        creative_ids = SnapshotStore(self.db).get_creative_ids(client_id, start, end)
        logger.info("[CREATIVE_CACHE] Refreshing %d creatives for client %s", len(creative_ids), client_id)

        started = self._clock()
        records = await self.get_many(creative_ids, client_id, access_token, force_refresh=True)
        # Failed refetches come back as the older cached row
        saved = sum(
            1 for record in records.values()
            if record is not None and record.last_fetched_at is not None and record.last_fetched_at >= started
        )
        return {
            "saved": saved,
            "failed": len(creative_ids) - saved,
            "creative_ids": creative_ids,
        }
