import pytest

from sitecrawler.utils.filters import is_crawlable


def test_is_crawlable_accepts_html_pages():
    assert is_crawlable("https://example.com/articles/intro")
    assert is_crawlable("https://example.com/story-123456.html")
    assert is_crawlable("https://example.com/")


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/image.jpg",
        "https://example.com/media/IMAGE.PNG",
        "https://example.com/files/report.pdf",
        "https://example.com/static/site.css",
        "https://example.com/static/app.js",
        "https://example.com/feed.xml",
    ],
)
def test_is_crawlable_rejects_static_assets(url):
    assert not is_crawlable(url)


def test_is_crawlable_rejects_non_http_urls():
    assert not is_crawlable("javascript:alert('x')")
    assert not is_crawlable("ftp://example.com/page")
    assert not is_crawlable("https:///no-host")
