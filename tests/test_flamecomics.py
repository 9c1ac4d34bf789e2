from datetime import datetime, timezone

import pytest

from conftest import FakeResponse, FakeSession
from connectors.errors import FormatMismatchError, NotFoundError
from connectors.flamecomics import FlameComicsConnector, collect_series_entries, latest_series_release

BASE = "https://flamecomics.xyz"

NOVELS_EXTRA = """
<html>
<head>
  <meta property="og:title" content="The Novel's Extra (Remake) - Flame Comics">
  <meta property="og:image" content="/_next/image?url=https%3A%2F%2Fcdn.flamecomics.xyz%2Fseries%2F83%2Fthumbnail.png&amp;w=1920&amp;q=100">
</head>
<body>
  <a href="/series/83/cd9daeaf1eb9b6ca"><p>Chapter <!-- -->146</p><p>February 16, 2026</p></a>
  <a href="/series/83/0b2e5a61f1f0a7d3"><p>Chapter <!-- -->145</p><p>February 9, 2026</p></a>
</body>
</html>"""

OMNISCIENT = """
<html>
<head><title>Omniscient Reader | Flame Comics</title></head>
<body>
  <a href="/series/22/9f8e7d6c5b4a3210">Chapter 130</a>
  <a href="/series/22/2dd2ff4ef56a0e99">Chapter 13</a>
  <a href="/series/22/1a2b3c4d5e6f7a8b">Chapter 12</a>
</body>
</html>"""

LATEST = """
<html><body>
  <a href="/series/83">The Novel's Extra (Remake) KR</a>
  <a href="/series/83/cd9daeaf1eb9b6ca">Chapter 146</a>
  <a href="/series/83">All Chapters</a>
  <a href="/series/22">Omniscient Reader</a>
  <a href="https://flamecomics.xyz/series/22">Omniscient Reader</a>
</body></html>"""


def make_connector(fast_settings, routes):
    session = FakeSession(routes)
    return FlameComicsConnector(settings=fast_settings, session=session), session


def test_resolve_by_url(fast_settings):
    connector, _ = make_connector(fast_settings, {BASE + "/series/83": NOVELS_EXTRA})
    result = connector.resolve_by_url("https://flamecomics.xyz/series/83")

    assert result.source_item_id == "83"
    assert result.title == "The Novel's Extra (Remake)"
    assert result.url == "https://flamecomics.xyz/series/83"
    assert result.cover_image_url == "https://cdn.flamecomics.xyz/series/83/thumbnail.png"
    assert result.latest_chapter == 146
    assert result.last_updated_at == datetime(2026, 2, 16, tzinfo=timezone.utc)


def test_resolve_requires_numeric_series_id(fast_settings):
    connector, session = make_connector(fast_settings, {})
    with pytest.raises(FormatMismatchError):
        connector.resolve_by_url("https://flamecomics.xyz/series/the-novels-extra")
    with pytest.raises(FormatMismatchError):
        connector.resolve_by_url("https://flamecomics.xyz/latest")
    assert session.calls == []


def test_search_by_title(fast_settings):
    connector, session = make_connector(fast_settings, {
        BASE + "/latest": LATEST,
        BASE + "/series/83": NOVELS_EXTRA,
    })
    results = connector.search_by_title("novel", 10)

    assert [item.source_item_id for item in results] == ["83"]
    assert BASE + "/series/22" not in session.urls()


def test_search_falls_back_to_home_page(fast_settings):
    connector, session = make_connector(fast_settings, {
        BASE + "/latest": FakeResponse(503, "maintenance"),
        BASE + "/": LATEST,
        BASE + "/series/22": OMNISCIENT,
    })
    results = connector.search_by_title("omniscient", 10)

    assert [item.source_item_id for item in results] == ["22"]
    assert results[0].title == "Omniscient Reader"
    assert results[0].latest_chapter == 130
    assert session.count(lambda url: url == BASE + "/series/22") == 1


def test_resolve_chapter_url_matches_exact_number(fast_settings):
    connector, _ = make_connector(fast_settings, {BASE + "/series/22": OMNISCIENT})
    url = connector.resolve_chapter_url("https://flamecomics.xyz/series/22", 13)
    assert url == "https://flamecomics.xyz/series/22/2dd2ff4ef56a0e99"

    with pytest.raises(NotFoundError):
        connector.resolve_chapter_url("https://flamecomics.xyz/series/22", 14)


def test_collect_series_entries_strips_region_and_chapter_links():
    assert collect_series_entries(LATEST) == [
        ("83", "The Novel's Extra (Remake)"),
        ("22", "Omniscient Reader"),
    ]


def test_latest_series_release_ignores_other_series():
    body = (
        '<a href="/series/9/aaaa">Chapter 300</a><span>March 1, 2026</span>'
        '<a href="/series/83/bbbb">Chapter 146</a><span>February 16, 2026</span>'
    )
    release = latest_series_release(body, "83")
    assert release.chapter == 146
    assert release.released_at == datetime(2026, 2, 16, tzinfo=timezone.utc)
