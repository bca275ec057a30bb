from loguru import logger
from tortoise import Tortoise

from sitecrawler.utils.db_utils import to_asyncpg_dsn


MODEL_MODULES = ["sitecrawler.storage.models"]


async def init_db(db_url: str, *, generate_schemas: bool = True) -> None:
    """
    Connect Tortoise to the crawl database and create/verify the tables.
    """
    db_url = to_asyncpg_dsn(db_url)

    logger.info("Initializing database and ORM models...")

    await Tortoise.init(
        db_url=db_url,
        modules={"models": MODEL_MODULES},
    )

    if generate_schemas:
        await Tortoise.generate_schemas(safe=True)
        logger.info("Crawl tables created or verified.")


async def close_db() -> None:
    await Tortoise.close_connections()
