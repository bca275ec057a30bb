from .queue_model import QueueItem, QueueStatus
from .page_model import Page

__all__ = [
    "QueueItem",
    "QueueStatus",
    "Page",
]
