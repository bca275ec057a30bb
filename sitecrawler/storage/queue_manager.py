from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from loguru import logger
from tortoise import timezone
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from sitecrawler.storage.models.queue_model import QueueItem, QueueStatus
from sitecrawler.utils.url_utils import DEFAULT_SLUG_MARKERS, score_priority


DEFAULT_MAX_ATTEMPTS = 4
NORMALIZE_FAILED = "normalize failed"
MAX_ERROR_LENGTH = 1000


class CrawlQueueManager:
    """Persistent crawl frontier backed by the ``crawl_queue`` table."""

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        slug_markers: Iterable[str] = DEFAULT_SLUG_MARKERS,
    ) -> None:
        self.max_attempts = max_attempts
        self.slug_markers = tuple(slug_markers)

    # -------------------------------------------------------
    # Claiming
    # -------------------------------------------------------

    async def claim_batch(
        self,
        limit: int = 1,
        *,
        claimed_before: Optional[datetime] = None,
    ) -> List[QueueItem]:
        """
        Atomically move up to ``limit`` queued items to ``processing``.

        Rows locked by a concurrent claimer are skipped rather than waited
        on, so claimers always receive disjoint items. With
        ``claimed_before`` set, items whose last claim is not older than
        that instant are left alone.
        """
        if limit <= 0:
            return []

        async with in_transaction() as conn:
            query = QueueItem.filter(status=QueueStatus.QUEUED)
            if claimed_before is not None:
                query = query.filter(
                    Q(claimed_at__isnull=True) | Q(claimed_at__lt=claimed_before)
                )

            items = await (
                query.order_by("-priority", "depth", "id")
                .limit(limit)
                .select_for_update(skip_locked=True)
                .using_db(conn)
            )
            if not items:
                return []

            now = timezone.now()
            await QueueItem.filter(id__in=[item.id for item in items]).using_db(conn).update(
                status=QueueStatus.PROCESSING,
                claimed_at=now,
                updated_at=now,
            )

        for item in items:
            item.status = QueueStatus.PROCESSING
            item.claimed_at = now
            logger.debug(f"Claimed: {item.url} (depth={item.depth}, priority={item.priority})")

        return items

    # -------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------

    async def enqueue(self, url: str, depth: int, priority: Optional[int] = None) -> None:
        """Insert ``url`` as queued unless a row with that URL already exists."""
        if priority is None:
            priority = score_priority(url, self.slug_markers)

        await QueueItem.bulk_create(
            [QueueItem(url=url, depth=depth, priority=priority, status=QueueStatus.QUEUED)],
            ignore_conflicts=True,
        )

    async def enqueue_many(self, urls: Iterable[str], depth: int) -> int:
        unique = list(dict.fromkeys(urls))
        if not unique:
            return 0

        await QueueItem.bulk_create(
            [
                QueueItem(
                    url=url,
                    depth=depth,
                    priority=score_priority(url, self.slug_markers),
                    status=QueueStatus.QUEUED,
                )
                for url in unique
            ],
            ignore_conflicts=True,
        )
        logger.debug(f"Offered {len(unique)} URLs to the queue at depth {depth}")
        return len(unique)

    # -------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------

    async def mark_done(self, item: QueueItem) -> None:
        await QueueItem.filter(id=item.id).update(
            status=QueueStatus.DONE,
            updated_at=timezone.now(),
        )
        item.status = QueueStatus.DONE

    async def mark_failed(self, item: QueueItem, error: object) -> QueueStatus:
        """
        Count a failed attempt. The item goes back to ``queued`` until it
        has failed ``max_attempts`` times, then it stays ``failed``.
        """
        attempts = (item.attempts or 0) + 1
        status = QueueStatus.FAILED if attempts >= self.max_attempts else QueueStatus.QUEUED
        message = (str(error) or error.__class__.__name__)[:MAX_ERROR_LENGTH]

        await QueueItem.filter(id=item.id).update(
            status=status,
            attempts=attempts,
            last_error=message,
            updated_at=timezone.now(),
        )
        item.attempts = attempts
        item.status = status
        item.last_error = message
        return status

    async def mark_normalize_failed(self, item: QueueItem) -> None:
        await QueueItem.filter(id=item.id).update(
            status=QueueStatus.FAILED,
            last_error=NORMALIZE_FAILED,
            updated_at=timezone.now(),
        )
        item.status = QueueStatus.FAILED
        item.last_error = NORMALIZE_FAILED

    async def requeue_stale(self, lease_seconds: float) -> int:
        """Return ``processing`` items whose lease expired to the queue."""
        if lease_seconds <= 0:
            return 0

        cutoff = timezone.now() - timedelta(seconds=lease_seconds)
        count = await QueueItem.filter(status=QueueStatus.PROCESSING).filter(
            Q(claimed_at__isnull=True) | Q(claimed_at__lt=cutoff)
        ).update(status=QueueStatus.QUEUED, updated_at=timezone.now())

        if count:
            logger.warning(f"Requeued {count} items left in processing past their lease")
        return count

    # -------------------------------------------------------
    # Inspection
    # -------------------------------------------------------

    async def count_queued(self) -> int:
        return await QueueItem.filter(status=QueueStatus.QUEUED).count()

    async def first_queued_item(self) -> Optional[QueueItem]:
        return await QueueItem.filter(status=QueueStatus.QUEUED).order_by("id").first()
