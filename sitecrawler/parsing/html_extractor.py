from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup


DEFAULT_CONTENT_SELECTORS = (
    "article",
    ".fck_detail",
    ".article-detail",
    ".main_content",
    "#main_detail",
    "[itemprop='articleBody']",
)

DEFAULT_BOILERPLATE_SELECTORS = (
    "script",
    "style",
    "noscript",
    "iframe",
    "nav",
    ".copyright",
    ".social",
    ".related",
    ".banner",
)

MIN_CONTENT_LENGTH = 100


@dataclass
class ExtractionPolicy:
    """Which containers hold the article body and what to strip from them."""

    content_selectors: Sequence[str] = DEFAULT_CONTENT_SELECTORS
    boilerplate_selectors: Sequence[str] = DEFAULT_BOILERPLATE_SELECTORS
    min_content_length: int = MIN_CONTENT_LENGTH


@dataclass
class ExtractedPage:
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    links: List[str] = field(default_factory=list)


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def extract_title(soup: BeautifulSoup) -> Optional[str]:
    tag = soup.find("title")
    if tag is None:
        return None
    title = collapse_whitespace(tag.get_text())
    return title or None


def extract_description(soup: BeautifulSoup) -> Optional[str]:
    tag = soup.find("meta", attrs={"name": "description"})
    if tag is None:
        return None
    description = (tag.get("content") or "").strip()
    return description or None


def extract_content(soup: BeautifulSoup, policy: ExtractionPolicy) -> Optional[str]:
    """
    Text of the first candidate container that is long enough once
    boilerplate is removed. ``None`` when no candidate qualifies.
    """
    boilerplate = ", ".join(policy.boilerplate_selectors)

    for selector in policy.content_selectors:
        node = soup.select_one(selector)
        if node is None:
            continue

        # work on a copy so link discovery still sees the full tree
        node = copy.copy(node)
        if boilerplate:
            for junk in node.select(boilerplate):
                junk.decompose()

        text = collapse_whitespace(node.get_text(separator=" "))
        # strictly longer: exactly min_content_length characters does not qualify
        if len(text) > policy.min_content_length:
            return text

    return None


def extract_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    """Absolute ``<a href>`` targets in document order, without duplicates."""
    links: List[str] = []
    seen: set[str] = set()

    for tag in soup.find_all("a", href=True):
        href = tag["href"].strip()
        if not href:
            continue
        try:
            absolute = urljoin(base_url, href)
        except ValueError:
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)

    return links


def extract_page(
    html: str,
    base_url: Optional[str] = None,
    policy: Optional[ExtractionPolicy] = None,
) -> ExtractedPage:
    """
    Parse ``html`` once and pull out title, description, body text and,
    when ``base_url`` is given, the outbound links.
    """
    policy = policy or ExtractionPolicy()
    soup = _parse(html)

    return ExtractedPage(
        title=extract_title(soup),
        description=extract_description(soup),
        content=extract_content(soup, policy),
        links=extract_links(soup, base_url) if base_url else [],
    )
