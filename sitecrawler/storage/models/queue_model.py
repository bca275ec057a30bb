from enum import Enum

from tortoise import fields, models


class QueueStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class QueueItem(models.Model):
    """
    One discovered URL and where it is in its crawl lifecycle.
    Rows are never deleted; the table doubles as the crawl history.
    """
    id = fields.IntField(pk=True)
    url = fields.CharField(max_length=700, unique=True)
    status = fields.CharEnumField(QueueStatus, max_length=20, default=QueueStatus.QUEUED)
    depth = fields.IntField(default=0)
    priority = fields.IntField(default=0)
    attempts = fields.IntField(default=0)
    last_error = fields.TextField(null=True)

    # lease timestamp, refreshed by every claim
    claimed_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    # set explicitly by every status transition
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "crawl_queue"
        indexes = (("status", "priority"), ("depth",))

    def __str__(self):
        return f"{self.url} [{self.status.value}, depth={self.depth}]"
