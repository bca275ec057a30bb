import asyncio
from datetime import timedelta

import pytest
from tortoise import timezone

from sitecrawler.storage.models import Page, QueueItem, QueueStatus
from sitecrawler.storage.queue_manager import NORMALIZE_FAILED, CrawlQueueManager
from sitecrawler.utils.url_utils import ARTICLE_PRIORITY


pytestmark = pytest.mark.anyio


async def test_enqueue_same_url_twice_keeps_one_row(db):
    queue = CrawlQueueManager()

    await queue.enqueue("https://example.com/a", depth=1)
    await queue.enqueue("https://example.com/a", depth=3, priority=99)

    items = await QueueItem.filter(url="https://example.com/a")
    assert len(items) == 1
    assert items[0].depth == 1
    assert items[0].status == QueueStatus.QUEUED


async def test_enqueue_never_resets_existing_items(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/a", depth=0)
    [item] = await queue.claim_batch(1)
    await queue.mark_done(item)

    await queue.enqueue("https://example.com/a", depth=0)

    assert (await QueueItem.get(url="https://example.com/a")).status == QueueStatus.DONE


async def test_enqueue_scores_priority_when_not_given(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/news-123456.html", depth=1)
    await queue.enqueue("https://example.com/about", depth=1)

    assert (await QueueItem.get(url="https://example.com/news-123456.html")).priority == ARTICLE_PRIORITY
    assert (await QueueItem.get(url="https://example.com/about")).priority == 0


async def test_enqueue_many_skips_existing_and_repeated_urls(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/a", depth=0)

    offered = await queue.enqueue_many(
        ["https://example.com/a", "https://example.com/b", "https://example.com/b"],
        depth=1,
    )

    assert offered == 2
    assert await QueueItem.all().count() == 2
    assert (await QueueItem.get(url="https://example.com/a")).depth == 0
    assert (await QueueItem.get(url="https://example.com/b")).depth == 1
    assert await queue.enqueue_many([], depth=1) == 0


async def test_claim_orders_by_priority_then_depth(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/deep", depth=2, priority=0)
    await queue.enqueue("https://example.com/shallow", depth=1, priority=0)
    await queue.enqueue("https://example.com/article", depth=3, priority=10)

    claimed = await queue.claim_batch(3)

    assert [item.url for item in claimed] == [
        "https://example.com/article",
        "https://example.com/shallow",
        "https://example.com/deep",
    ]
    assert all(item.status == QueueStatus.PROCESSING for item in claimed)
    assert await queue.claim_batch(1) == []


async def test_claim_marks_rows_processing_with_lease(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/a", depth=0)

    [item] = await queue.claim_batch(1)

    stored = await QueueItem.get(id=item.id)
    assert stored.status == QueueStatus.PROCESSING
    assert stored.claimed_at is not None


async def test_concurrent_claimers_receive_distinct_items(db):
    queue = CrawlQueueManager()
    for i in range(8):
        await queue.enqueue(f"https://example.com/page-{i}", depth=1)

    batches = await asyncio.gather(*(queue.claim_batch(1) for _ in range(5)))

    assert all(len(batch) == 1 for batch in batches)
    ids = [batch[0].id for batch in batches]
    assert len(set(ids)) == 5
    assert await QueueItem.filter(status=QueueStatus.PROCESSING).count() == 5
    assert await queue.count_queued() == 3


async def test_claim_with_zero_limit_returns_nothing(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/a", depth=0)

    assert await queue.claim_batch(0) == []
    assert await queue.count_queued() == 1


async def test_item_fails_permanently_at_retry_ceiling(db):
    queue = CrawlQueueManager(max_attempts=4)
    await queue.enqueue("https://example.com/flaky", depth=0)

    statuses = []
    for attempt in range(4):
        [item] = await queue.claim_batch(1)
        statuses.append(await queue.mark_failed(item, RuntimeError(f"boom {attempt}")))

    assert statuses == [QueueStatus.QUEUED] * 3 + [QueueStatus.FAILED]

    stored = await QueueItem.get(url="https://example.com/flaky")
    assert stored.status == QueueStatus.FAILED
    assert stored.attempts == 4
    assert stored.last_error == "boom 3"
    assert await queue.claim_batch(1) == []


async def test_mark_failed_truncates_long_errors(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/a", depth=0)
    [item] = await queue.claim_batch(1)

    await queue.mark_failed(item, "x" * 5000)

    assert len((await QueueItem.get(id=item.id)).last_error) == 1000


async def test_normalize_failure_is_terminal(db):
    queue = CrawlQueueManager()
    await queue.enqueue("ftp://example.com/bad", depth=0)
    [item] = await queue.claim_batch(1)

    await queue.mark_normalize_failed(item)

    stored = await QueueItem.get(id=item.id)
    assert stored.status == QueueStatus.FAILED
    assert stored.attempts == 0
    assert stored.last_error == NORMALIZE_FAILED
    assert await queue.claim_batch(1) == []


async def test_claimed_before_skips_items_claimed_in_this_run(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/a", depth=0)
    run_started = timezone.now()

    [item] = await queue.claim_batch(1, claimed_before=run_started)
    await queue.mark_failed(item, "temporary")

    assert await queue.claim_batch(1, claimed_before=run_started) == []

    next_run = timezone.now()
    [again] = await queue.claim_batch(1, claimed_before=next_run)
    assert again.id == item.id


async def test_requeue_stale_returns_expired_leases(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/stuck", depth=0)
    await queue.enqueue("https://example.com/fresh", depth=0)
    stuck, fresh = await queue.claim_batch(2)

    await QueueItem.filter(id=stuck.id).update(claimed_at=timezone.now() - timedelta(hours=2))

    assert await queue.requeue_stale(1800) == 1
    assert (await QueueItem.get(id=stuck.id)).status == QueueStatus.QUEUED
    assert (await QueueItem.get(id=fresh.id)).status == QueueStatus.PROCESSING
    assert await queue.requeue_stale(0) == 0


async def test_first_queued_item_and_count(db):
    queue = CrawlQueueManager()
    assert await queue.first_queued_item() is None

    await queue.enqueue("https://example.com/first", depth=0)
    await queue.enqueue("https://example.com/second", depth=0)

    assert (await queue.first_queued_item()).url == "https://example.com/first"
    assert await queue.count_queued() == 2


async def test_page_upsert_overwrites_existing_row(db):
    await Page.upsert("https://example.com/a", title="Old", content="old body")
    await Page.upsert("https://example.com/a", title="New", description="desc", content=None)

    pages = await Page.filter(url="https://example.com/a")
    assert len(pages) == 1
    assert pages[0].title == "New"
    assert pages[0].description == "desc"
    assert pages[0].content is None
    assert pages[0].fetched_at is not None


async def test_status_transitions_refresh_updated_at(db):
    queue = CrawlQueueManager()
    await queue.enqueue("https://example.com/a", depth=0)
    long_ago = timezone.now() - timedelta(days=1)
    await QueueItem.filter(url="https://example.com/a").update(updated_at=long_ago)

    [item] = await queue.claim_batch(1)
    claimed = await QueueItem.get(id=item.id)
    assert claimed.updated_at > long_ago

    await QueueItem.filter(id=item.id).update(updated_at=long_ago)
    await queue.mark_failed(item, "HTTP 503")
    assert (await QueueItem.get(id=item.id)).updated_at > long_ago

    await QueueItem.filter(id=item.id).update(updated_at=long_ago)
    await queue.mark_done(item)
    assert (await QueueItem.get(id=item.id)).updated_at > long_ago
