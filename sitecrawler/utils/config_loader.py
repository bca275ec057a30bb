import os
from typing import Any, Dict, List, Optional

import yaml

from pydantic_settings import BaseSettings, SettingsConfigDict

from sitecrawler.fetcher import (
    DEFAULT_ACCEPT_LANGUAGE,
    DEFAULT_BACKOFF_BASE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLITENESS_DELAY,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
)
from sitecrawler.parsing.html_extractor import (
    DEFAULT_CONTENT_SELECTORS,
    ExtractionPolicy,
    MIN_CONTENT_LENGTH,
)
from sitecrawler.storage.queue_manager import DEFAULT_MAX_ATTEMPTS
from sitecrawler.utils.env_loader import load_environment
from sitecrawler.utils.url_utils import DEFAULT_SLUG_MARKERS


DEFAULT_CONFIG_FILE = "config/config.yaml"


class Config(BaseSettings):
    database_url: str
    seed_url: Optional[str] = None
    max_depth: int = 6
    workers: int = 5
    crawl_interval: float = 180.0

    politeness_delay: float = DEFAULT_POLITENESS_DELAY
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base: float = DEFAULT_BACKOFF_BASE
    request_timeout: float = DEFAULT_TIMEOUT
    crawler_user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    lease_seconds: float = 1800.0
    article_slug_markers: List[str] = list(DEFAULT_SLUG_MARKERS)
    content_selectors: List[str] = list(DEFAULT_CONTENT_SELECTORS)
    min_content_length: int = MIN_CONTENT_LENGTH

    log_level: str = "INFO"
    log_path: Optional[str] = None
    metrics_port: Optional[int] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def extraction_policy(self) -> ExtractionPolicy:
        return ExtractionPolicy(
            content_selectors=tuple(self.content_selectors),
            min_content_length=self.min_content_length,
        )


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    config_path = path or os.getenv("CRAWLER_CONFIG_FILE") or DEFAULT_CONFIG_FILE
    if not os.path.exists(config_path):
        return {}

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _default_database_url() -> str:
    user = os.getenv("POSTGRES_USER", "sitecrawler")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "sitecrawler")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def load_config(config_file: Optional[str] = None, **overrides: Any) -> Config:
    """
    Build the crawler configuration.

    Precedence: explicit ``overrides`` -> environment (and ``.env``) ->
    the ``crawler:`` section of the YAML file -> defaults.
    """
    load_environment()
    file_data = _load_yaml_config(config_file)
    crawler_settings: Dict[str, Any] = file_data.get("crawler") or {}

    env_keys = {key.upper() for key in os.environ}
    values = {
        key: value
        for key, value in crawler_settings.items()
        if key.upper() not in env_keys
    }

    if "DATABASE_URL" not in env_keys and "database_url" not in values:
        values["database_url"] = _default_database_url()

    values.update({k: v for k, v in overrides.items() if v is not None})
    return Config(**values)
