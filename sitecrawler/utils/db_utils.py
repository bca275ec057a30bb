"""Helpers for database connection strings.

Deployments hand us PostgreSQL URLs in several spellings
(``postgresql+psycopg2://``, ``postgres://``, ``postgresql://``). Tortoise ORM
wants the ``asyncpg://`` scheme; other schemes (``sqlite://`` in tests) pass
through untouched.
"""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit


def to_asyncpg_dsn(url: str) -> str:
    """Convert a PostgreSQL DSN to the ``asyncpg://`` scheme for Tortoise."""

    if url.startswith("postgresql+"):
        url = "postgresql://" + url.split("://", 1)[1]
    if url.startswith("postgresql://"):
        return "asyncpg://" + url[len("postgresql://") :]
    if url.startswith("postgres://"):
        return "asyncpg://" + url[len("postgres://") :]
    return url


def mask_dsn(url: str) -> str:
    """Hide the password of a DSN so it can be logged."""

    try:
        parts = urlsplit(url)
    except ValueError:
        return "<invalid dsn>"
    if not parts.password:
        return url

    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return urlunsplit(parts._replace(netloc=netloc))
