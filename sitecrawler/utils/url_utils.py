from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import (
    parse_qsl,
    quote,
    urlencode,
    urljoin,
    urlsplit,
    urlunsplit,
)

from sitecrawler.errors import MalformedURLError


TRACKING_PARAM_RE = re.compile(r"^(utm_|fbclid|gclid|yclid|mc_)", re.IGNORECASE)

# pagination / category keys; everything else is query noise
KEEP_QUERY_KEYS = frozenset({"page", "p", "start", "offset", "cate", "category"})

DEFAULT_SLUG_MARKERS = ("tin-", "bai-")
ARTICLE_PRIORITY = 10

_DEFAULT_PORTS = {80, 443}
_LONG_DIGITS_RE = re.compile(r"\d{6,}")

# RFC 3986 pchar set plus "/" and "%"; existing escapes are left as they are
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"
_ESCAPE_RE = re.compile(r"%[0-9a-fA-F]{2}")


def strip_www(hostname: str) -> str:
    hostname = hostname.lower()
    if hostname.startswith("www."):
        return hostname[4:]
    return hostname


def _encode_path(path: str) -> str:
    encoded = quote(path, safe=_PATH_SAFE)
    return _ESCAPE_RE.sub(lambda m: m.group(0).upper(), encoded)


def _clean_query(query: str) -> str:
    kept: dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        if TRACKING_PARAM_RE.match(key):
            continue
        name = key.lower()
        if name in KEEP_QUERY_KEYS:
            # repeated keys collapse to the last value
            kept.pop(name, None)
            kept[name] = value
    return urlencode(kept)


def canonicalize(raw_url: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """
    Rewrite ``raw_url`` into the single form used as the queue and page key.

    Relative links are resolved against ``base_url``. ``http`` and ``https``
    collapse to ``https``; fragments, tracking and non allow-listed query
    parameters, a trailing slash and a leading ``www.`` are dropped.
    Returns ``None`` for anything that is not a usable http(s) URL.
    """
    if not raw_url or not isinstance(raw_url, str):
        return None

    try:
        link = raw_url.strip()
        if base_url:
            link = urljoin(base_url, link)

        parts = urlsplit(link)
        if parts.scheme.lower() not in ("http", "https"):
            return None

        hostname = parts.hostname
        if not hostname:
            return None
        hostname = strip_www(hostname.rstrip("."))
        if not hostname.isascii():
            hostname = hostname.encode("idna").decode("ascii")
        if not hostname or any(c.isspace() for c in hostname):
            return None

        port = parts.port
        netloc = hostname
        if ":" in hostname:
            netloc = f"[{hostname}]"
        if port is not None and port not in _DEFAULT_PORTS:
            netloc = f"{netloc}:{port}"

        path = _encode_path(parts.path or "/")
        if path != "/" and path.endswith("/"):
            path = path[:-1]

        query = _clean_query(parts.query) if parts.query else ""

        return urlunsplit(("https", netloc, path, query, ""))
    except ValueError:
        return None


def require_canonical(raw_url: str, base_url: Optional[str] = None) -> str:
    canonical = canonicalize(raw_url, base_url)
    if canonical is None:
        raise MalformedURLError(raw_url)
    return canonical


def get_hostname(url: str) -> str:
    """Lower-cased host of ``url`` without port, or ``""``."""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def is_in_scope(hostname: str, root_hostname: str) -> bool:
    """True when ``hostname`` is the root site or one of its subdomains."""
    if not hostname or not root_hostname:
        return False
    current = strip_www(hostname)
    root = strip_www(root_hostname)
    return current == root or current.endswith(f".{root}")


def score_priority(url: str, slug_markers: Iterable[str] = DEFAULT_SLUG_MARKERS) -> int:
    """Higher score for URLs that look like article pages."""
    try:
        path = urlsplit(url).path.lower()
    except ValueError:
        return 0

    if _LONG_DIGITS_RE.search(path) or path.endswith(".html"):
        return ARTICLE_PRIORITY
    if any(marker in path for marker in slug_markers):
        return ARTICLE_PRIORITY
    return 0
