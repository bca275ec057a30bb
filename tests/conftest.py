import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sitecrawler.storage.postgres.postgres_init import close_db, init_db


CRAWLER_ENV_KEYS = [
    "DATABASE_URL",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "POSTGRES_HOST",
    "POSTGRES_PORT",
    "POSTGRES_DB",
    "SEED_URL",
    "MAX_DEPTH",
    "WORKERS",
    "CRAWL_INTERVAL",
    "CRAWLER_USER_AGENT",
    "CRAWLER_CONFIG_FILE",
    "CRAWLER_ENV_FILE",
    "LOG_LEVEL",
    "METRICS_PORT",
]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep host settings and stray .env/config files out of every test."""

    for key in CRAWLER_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)

    # find_dotenv / config/config.yaml are resolved from the cwd
    monkeypatch.chdir(tmp_path)

    yield

    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db():
    """Fresh in-memory crawl database for one test."""
    await init_db("sqlite://:memory:")
    yield
    await close_db()
