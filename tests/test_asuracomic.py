from datetime import datetime, timezone

import pytest

from conftest import FakeSession
from connectors.asuracomic import AsuraComicConnector, collect_series_anchors, last_updated_at, published_at_by_chapter
from connectors.errors import FormatMismatchError, HostMismatchError, NotFoundError

BASE = "https://asuracomic.net"

NANO_MACHINE = """
<html>
<head>
  <title>Nano Machine - Asura Scans</title>
  <meta property="og:image" content="https://gg.asuracomic.net/storage/media/nano.webp">
</head>
<body>
  <div><h3>Updated On</h3><h3>February 17th 2026</h3></div>
  <a href="/series/nano-machine-11b89554/chapter/299">Chapter 299</a>
  <a href="/series/nano-machine-11b89554/chapter/298">Chapter 298</a>
  <a href="/series/nano-machine-11b89554/chapter/297">Chapter 297</a>
</body>
</html>"""

BARE_LINKS = """
<html>
<head><title>Omniscient Reader | Asura Scans</title></head>
<body>
  <a href="/chapter/215"><span>Chapter 215</span><h3>February 11th 2026</h3></a>
  <a href="/chapter/214"><span>Chapter 214</span><h3>February 4th 2026</h3></a>
</body>
</html>"""

FLIGHT_DATA = r"""
<html>
<head><title>Nano Machine - Asura Scans</title></head>
<body>
  <a href="/series/nano-machine-11b89554/chapter/299">Chapter 299</a><h3>February 10th 2026</h3>
  <script>self.__next_f.push([1,"{\"chapters\":[{\"name\":\"299\",\"title\":\"\",\"published_at\":\"2026-02-11T16:44:55Z\"},{\"name\":\"298\",\"published_at\":\"2026-02-04T16:40:00Z\"}]}"])</script>
</body>
</html>"""

SEARCH_PAGE = """
<html><body>
  <a href="series/solo-leveling-ragnarok-5a3e2b1f"><img src="/a.webp"><span>Poster</span></a>
  <a href="series/solo-leveling-ragnarok-5a3e2b1f">Solo Leveling: Ragnarok Chapter 48</a>
  <a href="series/solo-leveling-arise-9c1d">Solo Leveling Arise</a>
  <a href="series/nano-machine-11b89554">Nano Machine</a>
  <a href="/series?page=2">Next</a>
</body></html>"""


def series_page(title, chapter):
    return f"""<html><head><title>{title} - Asura Scans</title></head>
    <body><a href="/series/x/chapter/{chapter}">Chapter {chapter}</a></body></html>"""


def make_connector(fast_settings, routes):
    session = FakeSession(routes)
    return AsuraComicConnector(settings=fast_settings, session=session), session


def test_resolve_by_url_uses_updated_on_label(fast_settings):
    connector, _ = make_connector(fast_settings, {BASE + "/series/nano-machine-11b89554": NANO_MACHINE})
    result = connector.resolve_by_url("https://asuracomic.net/series/nano-machine-11b89554")

    assert result.source_item_id == "nano-machine-11b89554"
    assert result.title == "Nano Machine"
    assert result.cover_image_url == "https://gg.asuracomic.net/storage/media/nano.webp"
    assert result.latest_chapter == 299
    assert result.last_updated_at == datetime(2026, 2, 17, tzinfo=timezone.utc)


def test_resolve_reads_bare_chapter_links(fast_settings):
    connector, _ = make_connector(fast_settings, {BASE + "/series/omniscient-reader-7f0a": BARE_LINKS})
    result = connector.resolve_by_url("https://asuracomic.net/series/omniscient-reader-7f0a/")

    assert result.title == "Omniscient Reader"
    assert result.latest_chapter == 215
    assert result.last_updated_at.date().isoformat() == "2026-02-11"


def test_resolve_prefers_exact_published_at(fast_settings):
    connector, _ = make_connector(fast_settings, {BASE + "/series/nano-machine-11b89554": FLIGHT_DATA})
    result = connector.resolve_by_url("https://asuracomic.net/series/nano-machine-11b89554")

    assert result.latest_chapter == 299
    assert result.last_updated_at == datetime(2026, 2, 11, 16, 44, 55, tzinfo=timezone.utc)


def test_resolve_rejects_bad_urls_without_requests(fast_settings):
    connector, session = make_connector(fast_settings, {})
    with pytest.raises(HostMismatchError):
        connector.resolve_by_url("https://asurascans.example/series/nano-machine-11b89554")
    with pytest.raises(FormatMismatchError):
        connector.resolve_by_url("https://asuracomic.net/manga/nano-machine")
    with pytest.raises(FormatMismatchError):
        connector.resolve_by_url("https://asuracomic.net/series/Nano_Machine")
    assert session.calls == []


def test_search_by_title(fast_settings):
    connector, session = make_connector(fast_settings, {
        BASE + "/series": SEARCH_PAGE,
        BASE + "/series/nano-machine-11b89554": NANO_MACHINE,
    })
    results = connector.search_by_title("nano", 10)

    assert [item.source_item_id for item in results] == ["nano-machine-11b89554"]
    assert BASE + "/series?page=1&name=nano" in session.urls()
    assert BASE + "/series/solo-leveling-arise-9c1d" not in session.urls()


def test_search_matches_tokens_in_any_order(fast_settings):
    connector, _ = make_connector(fast_settings, {
        BASE + "/series": SEARCH_PAGE,
        BASE + "/series/solo-leveling-ragnarok-5a3e2b1f": series_page("Solo Leveling: Ragnarok", 48),
        BASE + "/series/solo-leveling-arise-9c1d": series_page("Solo Leveling Arise", 12),
    })
    results = connector.search_by_title("leveling solo", 10)

    assert [item.source_item_id for item in results] == ["solo-leveling-ragnarok-5a3e2b1f", "solo-leveling-arise-9c1d"]
    assert results[0].title == "Solo Leveling: Ragnarok"


def test_search_skips_series_that_fail_to_load(fast_settings):
    connector, _ = make_connector(fast_settings, {
        BASE + "/series": SEARCH_PAGE,
        BASE + "/series/solo-leveling-arise-9c1d": series_page("Solo Leveling Arise", 12),
    })
    results = connector.search_by_title("solo leveling", 10)
    assert [item.source_item_id for item in results] == ["solo-leveling-arise-9c1d"]


def test_resolve_chapter_url(fast_settings):
    connector, _ = make_connector(fast_settings, {BASE + "/series/nano-machine-11b89554": NANO_MACHINE})
    url = connector.resolve_chapter_url("https://asuracomic.net/series/nano-machine-11b89554", 298)
    assert url == "https://asuracomic.net/series/nano-machine-11b89554/chapter/298"

    with pytest.raises(NotFoundError):
        connector.resolve_chapter_url("https://asuracomic.net/series/nano-machine-11b89554", 5)


def test_collect_series_anchors_prefers_text_titles():
    listing = collect_series_anchors(SEARCH_PAGE, BASE)
    assert listing == {
        "solo-leveling-ragnarok-5a3e2b1f": "Solo Leveling: Ragnarok",
        "solo-leveling-arise-9c1d": "Solo Leveling Arise",
        "nano-machine-11b89554": "Nano Machine",
    }


def test_published_at_by_chapter():
    found = published_at_by_chapter(FLIGHT_DATA)
    assert found[299.0] == datetime(2026, 2, 11, 16, 44, 55, tzinfo=timezone.utc)
    assert found[298.0] == datetime(2026, 2, 4, 16, 40, tzinfo=timezone.utc)


def test_last_updated_at_falls_back_to_latest_date():
    body = "<p>Released January 3rd 2026</p><p>Last chapter February 9th 2026</p>"
    assert last_updated_at(body) == datetime(2026, 2, 9, tzinfo=timezone.utc)
    assert last_updated_at("<p>no dates</p>") is None
