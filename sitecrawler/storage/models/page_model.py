from typing import Optional

from tortoise import fields, models, timezone
from tortoise.backends.base.client import BaseDBAsyncClient


class Page(models.Model):
    """
    An archived page, keyed by canonical URL.
    """
    id = fields.IntField(pk=True)
    url = fields.CharField(max_length=700, unique=True)
    title = fields.CharField(max_length=512, null=True)
    description = fields.TextField(null=True)
    content = fields.TextField(null=True)
    fetched_at = fields.DatetimeField(null=True)

    class Meta:
        table = "pages"

    def __str__(self):
        return self.url

    @classmethod
    async def upsert(
        cls,
        url: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        content: Optional[str] = None,
        using_db: Optional[BaseDBAsyncClient] = None,
    ) -> None:
        """Insert the page or overwrite the row that already has this URL."""
        if title is not None and len(title) > 512:
            title = title[:512]

        page = cls(
            url=url,
            title=title,
            description=description,
            content=content,
            fetched_at=timezone.now(),
        )
        await cls.bulk_create(
            [page],
            on_conflict=["url"],
            update_fields=["title", "description", "content", "fetched_at"],
            using_db=using_db,
        )
