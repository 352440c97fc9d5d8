"""Resolution pipeline tests: cache-aside behaviour, expiry and degraded modes."""

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest

from app.enums import CacheStatus
from app.exceptions import LinkExpiredError, LinkNotFoundError
from app.resolver import ClickTracker, ResolutionPipeline, cache_key
from app.schemas import CachedLinkPayload
from app.store import LinkStore, VisitMetadata


@pytest.mark.asyncio
async def test_cache_miss_reads_store_and_populates_cache(pipeline, cache, settings, make_link) -> None:
    await make_link(code="miss001", target_url="https://example.com/miss")

    resolution = await pipeline.resolve("miss001")

    assert resolution.target_url == "https://example.com/miss"
    assert resolution.cache_status is CacheStatus.MISS
    raw, expires = cache.data[cache_key("miss001")]
    assert CachedLinkPayload.model_validate_json(raw).target_url == "https://example.com/miss"
    assert expires == cache.now + settings.CACHE_TTL_SECONDS


@pytest.mark.asyncio
async def test_cache_hit_skips_store(cache, settings) -> None:
    store = AsyncMock(spec=LinkStore)
    await cache.set_with_ttl(cache_key("hit0001"), CachedLinkPayload(target_url="https://hit.example").model_dump_json(), 60)
    tracker = ClickTracker(store)
    pipeline = ResolutionPipeline(store, cache, tracker, settings)

    resolution = await pipeline.resolve("hit0001")
    await tracker.drain()

    assert resolution.target_url == "https://hit.example"
    assert resolution.cache_status is CacheStatus.HIT
    store.get.assert_not_awaited()
    store.increment_clicks.assert_awaited_once_with("hit0001")


@pytest.mark.asyncio
async def test_not_found(pipeline) -> None:
    with pytest.raises(LinkNotFoundError):
        await pipeline.resolve("nothere")


@pytest.mark.asyncio
async def test_expired_record_on_miss(pipeline, cache, make_link) -> None:
    await make_link(code="exp0001", expires_in=datetime.timedelta(seconds=-1))

    with pytest.raises(LinkExpiredError):
        await pipeline.resolve("exp0001")

    assert cache_key("exp0001") not in cache.data


@pytest.mark.asyncio
async def test_expired_record_with_stale_cache_entry(pipeline, cache, store, make_link) -> None:
    link = await make_link(code="stale01", expires_in=datetime.timedelta(seconds=-1))
    stale = CachedLinkPayload(target_url=link.target_url, expires_at=link.expires_at)
    await cache.set_with_ttl(cache_key("stale01"), stale.model_dump_json(), 86400)

    with pytest.raises(LinkExpiredError):
        await pipeline.resolve("stale01")

    assert cache_key("stale01") not in cache.data
    await pipeline._tracker.drain()
    assert (await store.get("stale01")).click_count == 0


@pytest.mark.asyncio
async def test_link_expiring_after_cache_population(pipeline, cache, make_link) -> None:
    await make_link(code="soon001", expires_in=datetime.timedelta(milliseconds=300))
    await pipeline.resolve("soon001")
    assert cache_key("soon001") in cache.data

    # Cache TTL is 24h, far longer than the link's life; the hit path must still catch expiry.
    payload = CachedLinkPayload.model_validate_json(cache.data[cache_key("soon001")][0])
    expired = payload.model_copy(update={"expires_at": payload.expires_at - datetime.timedelta(seconds=1)})
    await cache.set_with_ttl(cache_key("soon001"), expired.model_dump_json(), 86400)

    with pytest.raises(LinkExpiredError):
        await pipeline.resolve("soon001")


@pytest.mark.asyncio
async def test_failing_cache_falls_back_to_store(store, tracker, failing_cache, settings, make_link) -> None:
    await make_link(code="nocache", target_url="https://fallback.example")
    pipeline = ResolutionPipeline(store, failing_cache, tracker, settings)

    for _ in range(3):
        resolution = await pipeline.resolve("nocache")
        assert resolution.target_url == "https://fallback.example"
        assert resolution.cache_status is CacheStatus.MISS

    assert failing_cache.calls == 6  # get + set per resolve


@pytest.mark.asyncio
async def test_failing_cache_still_reports_expired_and_not_found(store, tracker, failing_cache, settings, make_link) -> None:
    await make_link(code="dead001", expires_in=datetime.timedelta(seconds=-1))
    pipeline = ResolutionPipeline(store, failing_cache, tracker, settings)

    with pytest.raises(LinkExpiredError):
        await pipeline.resolve("dead001")
    with pytest.raises(LinkNotFoundError):
        await pipeline.resolve("missing")


@pytest.mark.asyncio
async def test_undecodable_cache_entry_is_treated_as_miss(pipeline, cache, make_link) -> None:
    await make_link(code="junk001", target_url="https://real.example")
    await cache.set_with_ttl(cache_key("junk001"), "not json", 60)

    resolution = await pipeline.resolve("junk001")

    assert resolution.target_url == "https://real.example"
    assert resolution.cache_status is CacheStatus.MISS


@pytest.mark.asyncio
async def test_repeated_resolves_are_idempotent(pipeline, cache, make_link) -> None:
    await make_link(code="same001", target_url="https://same.example")

    first = await pipeline.resolve("same001")
    second = await pipeline.resolve("same001")
    await cache.delete(cache_key("same001"))
    third = await pipeline.resolve("same001")

    assert first.target_url == second.target_url == third.target_url == "https://same.example"
    assert [first.cache_status, second.cache_status, third.cache_status] == [
        CacheStatus.MISS,
        CacheStatus.HIT,
        CacheStatus.MISS,
    ]


@pytest.mark.asyncio
async def test_click_accounting_on_hit_and_miss(pipeline, store, make_link) -> None:
    await make_link(code="count01")

    await pipeline.resolve("count01", visit=VisitMetadata(client_ip="9.9.9.9", referrer="https://ref.example"))
    await pipeline.resolve("count01")
    await pipeline._tracker.drain()

    link = await store.get("count01")
    assert link.click_count == 2
    assert link.last_accessed_at is not None
    events = await store.recent_click_events("count01")
    assert [(e.client_ip, e.referrer) for e in events] == [("9.9.9.9", "https://ref.example")]


@pytest.mark.asyncio
async def test_click_accounting_failure_does_not_affect_resolution(cache, settings) -> None:
    store = AsyncMock(spec=LinkStore)
    store.increment_clicks.side_effect = RuntimeError("write failed")
    tracker = ClickTracker(store)
    pipeline = ResolutionPipeline(store, cache, tracker, settings)
    await cache.set_with_ttl(cache_key("bad0001"), CachedLinkPayload(target_url="https://ok.example").model_dump_json(), 60)

    resolution = await pipeline.resolve("bad0001")
    await tracker.drain()

    assert resolution.target_url == "https://ok.example"
    store.increment_clicks.assert_awaited_once_with("bad0001")
    assert tracker.pending == 0


@pytest.mark.asyncio
async def test_store_errors_propagate(cache, tracker, settings) -> None:
    store = AsyncMock(spec=LinkStore)
    store.get.side_effect = ConnectionError("database unreachable")
    pipeline = ResolutionPipeline(store, cache, tracker, settings)

    with pytest.raises(ConnectionError):
        await pipeline.resolve("anycode")


@pytest.mark.asyncio
async def test_click_backlog_is_bounded_while_store_is_blocked(cache, settings) -> None:
    release = asyncio.Event()
    in_flight = 0
    peak = 0

    async def slow_increment(code: str) -> None:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await release.wait()
        in_flight -= 1

    store = AsyncMock(spec=LinkStore)
    store.increment_clicks.side_effect = slow_increment
    tracker = ClickTracker(store, max_concurrency=5, max_pending=50)
    pipeline = ResolutionPipeline(store, cache, tracker, settings)
    await cache.set_with_ttl(cache_key("busy001"), CachedLinkPayload(target_url="https://busy.example").model_dump_json(), 60)

    for _ in range(500):
        resolution = await pipeline.resolve("busy001")
        assert resolution.target_url == "https://busy.example"
    await asyncio.sleep(0)

    assert tracker.pending == 50
    assert peak == 5

    release.set()
    await tracker.drain()

    assert store.increment_clicks.await_count == 50
    assert tracker.pending == 0


@pytest.mark.asyncio
async def test_tracker_accepts_clicks_again_after_backlog_clears(settings) -> None:
    store = AsyncMock(spec=LinkStore)
    tracker = ClickTracker(store, max_concurrency=1, max_pending=2)

    assert tracker.track("a") is not None
    assert tracker.track("b") is not None
    assert tracker.track("c") is None

    await tracker.drain()

    assert tracker.track("d") is not None
    await tracker.drain()
    assert [c.args[0] for c in store.increment_clicks.await_args_list] == ["a", "b", "d"]


@pytest.mark.parametrize(("max_concurrency", "max_pending"), [(0, 10), (10, 0)])
def test_tracker_rejects_non_positive_limits(max_concurrency, max_pending) -> None:
    with pytest.raises(ValueError):
        ClickTracker(AsyncMock(spec=LinkStore), max_concurrency=max_concurrency, max_pending=max_pending)
