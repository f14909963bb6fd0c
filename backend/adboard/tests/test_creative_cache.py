"""Tests for the creative cache.

WHAT:
    TTL freshness, refetch, stale fallback, creative type classification and
    the per-client refresh.

WHY:
    The ad-level board shows a creative per row. Refetching on every report
    would burn the Graph rate limit; never refetching would show outdated
    copy; failing hard on a refetch would blank the board.

REFERENCES:
    - adboard/services/creative_cache.py (module under test)
"""

import asyncio
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from adboard.errors import TransientUpstreamError, UpstreamError
from adboard.models import CreativeTypeEnum
from adboard.services.creative_cache import CreativeCache, classify_creative, parse_creative


T0 = datetime(2025, 1, 1, 12, 0)

IMAGE_CREATIVE = {
    "id": "cr-1",
    "name": "Spring promo",
    "image_url": "https://cdn/img.jpg",
    "image_hash": "abc",
    "object_story_spec": {
        "link_data": {
            "message": "Get a free roof inspection",
            "name": "Book today",
            "description": "Limited slots",
            "call_to_action": {"type": "LEARN_MORE"},
        }
    },
}


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(T0)


@pytest.fixture
def graph():
    graph = Mock()
    graph.fetch_page = AsyncMock(return_value=dict(IMAGE_CREATIVE))
    return graph


@pytest.fixture
def cache(test_db_session, graph, clock):
    return CreativeCache(test_db_session, graph, ttl_days=7, clock=clock)


class TestTtl:
    def test_first_get_fetches_and_caches(self, cache, graph):
        record = asyncio.run(cache.get("cr-1", "client-1", "tok"))

        assert record.creative_type == CreativeTypeEnum.image
        assert record.primary_text == "Get a free roof inspection"
        assert record.headline == "Book today"
        assert record.client_id == "client-1"
        assert record.last_fetched_at == T0
        graph.fetch_page.assert_awaited_once()

    def test_six_days_later_is_served_from_cache(self, cache, graph, clock):
        """WHAT: Within the 7-day TTL no network call is made."""
        asyncio.run(cache.get("cr-1", "client-1", "tok"))
        clock.now = T0 + timedelta(days=6)

        record = asyncio.run(cache.get("cr-1", "client-1", "tok"))

        assert record.last_fetched_at == T0
        assert graph.fetch_page.await_count == 1

    def test_eight_days_later_is_refetched(self, cache, graph, clock):
        asyncio.run(cache.get("cr-1", "client-1", "tok"))
        clock.now = T0 + timedelta(days=8)
        graph.fetch_page.return_value = dict(IMAGE_CREATIVE, name="Summer promo")

        record = asyncio.run(cache.get("cr-1", "client-1", "tok"))

        assert graph.fetch_page.await_count == 2
        assert record.name == "Summer promo"
        assert record.last_fetched_at == clock.now

    def test_failed_refetch_returns_stale_copy(self, cache, graph, clock):
        """WHAT: Expired row + Graph failure -> the old row, unchanged.
        WHY: A stale creative beats an empty cell on the board.
        """
        asyncio.run(cache.get("cr-1", "client-1", "tok"))
        clock.now = T0 + timedelta(days=8)
        graph.fetch_page.side_effect = TransientUpstreamError("throttled")

        record = asyncio.run(cache.get("cr-1", "client-1", "tok"))

        assert record is not None
        assert record.name == "Spring promo"
        assert record.last_fetched_at == T0

    def test_failed_fetch_with_nothing_cached_returns_none(self, cache, graph):
        graph.fetch_page.side_effect = UpstreamError("gone", status=404)

        assert asyncio.run(cache.get("cr-404", "client-1", "tok")) is None

    def test_force_refresh_ignores_ttl(self, cache, graph):
        asyncio.run(cache.get("cr-1", "client-1", "tok"))
        asyncio.run(cache.get("cr-1", "client-1", "tok", force_refresh=True))

        assert graph.fetch_page.await_count == 2


class TestVideoCreatives:
    def test_video_details_fetched_and_largest_thumbnail_kept(self, cache, graph):
        creative = {"id": "cr-v", "object_story_spec": {"video_data": {"video_id": "vid-1", "message": "Watch"}}}
        video = {
            "source": "https://cdn/video.mp4",
            "length": 15.2,
            "thumbnails": {"data": [
                {"uri": "https://cdn/small.jpg", "scale": 1},
                {"uri": "https://cdn/big.jpg", "scale": 2},
            ]},
        }
        graph.fetch_page = AsyncMock(side_effect=[creative, video])
        cache.graph = graph

        record = asyncio.run(cache.get("cr-v", "client-1", "tok"))

        assert record.creative_type == CreativeTypeEnum.video
        assert record.videos == [{
            "id": "vid-1",
            "url": "https://cdn/video.mp4",
            "thumbnail_url": "https://cdn/big.jpg",
            "duration": 15.2,
        }]

    def test_video_lookup_failure_keeps_video_type(self, cache, graph):
        creative = {"id": "cr-v", "video_id": "vid-1"}
        graph.fetch_page = AsyncMock(side_effect=[creative, UpstreamError("no permission", status=403)])
        cache.graph = graph

        record = asyncio.run(cache.get("cr-v", "client-1", "tok"))

        assert record.creative_type == CreativeTypeEnum.video
        assert record.videos == []


class TestClassification:
    def test_priority_video_carousel_image_link_other(self):
        assert classify_creative({"video_id": "v"}) == CreativeTypeEnum.video
        assert classify_creative(
            {"object_story_spec": {"link_data": {"child_attachments": [{"name": "a"}], "link": "x"}}}
        ) == CreativeTypeEnum.carousel
        assert classify_creative({"image_hash": "h"}) == CreativeTypeEnum.image
        assert classify_creative({"object_story_spec": {"link_data": {"link": "https://x"}}}) == CreativeTypeEnum.link
        assert classify_creative({}) == CreativeTypeEnum.other

    def test_asset_feed_formats(self):
        assert classify_creative({"asset_feed_spec": {"ad_formats": ["SINGLE_VIDEO"]}}) == CreativeTypeEnum.video
        assert classify_creative({"asset_feed_spec": {"ad_formats": ["CAROUSEL"]}}) == CreativeTypeEnum.carousel
        assert classify_creative(
            {"asset_feed_spec": {"ad_formats": ["SINGLE_IMAGE", "SINGLE_VIDEO"]}}
        ) == CreativeTypeEnum.image

    def test_parse_falls_back_to_asset_feed_copy(self):
        parsed = parse_creative({
            "id": "cr-a",
            "asset_feed_spec": {
                "bodies": [{"text": "Body A"}],
                "titles": [{"text": "Title A"}],
                "images": [{"hash": "h1"}],
                "call_to_actions": [{"type": "SIGN_UP"}],
            },
        })

        assert parsed["primary_text"] == "Body A"
        assert parsed["headline"] == "Title A"
        assert parsed["image_hash"] == "h1"
        assert parsed["call_to_action"] == {"type": "SIGN_UP"}


class TestFetchAndSaveForClient:
    def test_refreshes_every_referenced_creative(self, cache, graph, make_snapshot):
        make_snapshot(ad_id="ad-1", creative_id="cr-1")
        make_snapshot(ad_id="ad-2", creative_id="cr-2")

        async def fetch(path, params, token):
            creative_id = path.strip("/")
            if creative_id == "cr-2":
                raise UpstreamError("deleted", status=400)
            return dict(IMAGE_CREATIVE, id=creative_id)

        graph.fetch_page = AsyncMock(side_effect=fetch)

        summary = asyncio.run(
            cache.fetch_and_save_for_client("client-1", date(2025, 1, 6), date(2025, 1, 12), "tok")
        )

        assert summary == {"saved": 1, "failed": 1, "creative_ids": ["cr-1", "cr-2"]}
