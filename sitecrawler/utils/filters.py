import re
from urllib.parse import urlsplit

# static assets that are never archived as pages
BLOCKED_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".mp4", ".mp3",
    ".pdf", ".zip", ".rar", ".exe", ".apk", ".iso", ".tar", ".gz", ".7z",
    ".css", ".js", ".xml", ".rss",
)

_BLOCKED_RE = re.compile(
    "(?:" + "|".join(re.escape(ext) for ext in BLOCKED_EXTENSIONS) + r")$",
    re.IGNORECASE,
)


def is_crawlable(url: str) -> bool:
    """Whether a canonical URL points at something worth fetching as a page."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False

    if parts.scheme not in ("http", "https") or not parts.netloc:
        return False

    if _BLOCKED_RE.search(parts.path):
        return False

    return True
