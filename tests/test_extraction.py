import re
from datetime import datetime, timedelta, timezone

import pytest

from connectors.extraction import (
    absolute_url,
    chapter_matches,
    find_date,
    format_chapter_number,
    host_allowed,
    latest_chapter_release,
    make_soup,
    page_title,
    parse_absolute_date,
    parse_chapter_number,
    parse_iso_datetime,
    parse_relative_time,
    prettify_identifier,
    unwrap_image_proxy,
)

NOW = datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)


def test_parse_chapter_number():
    assert parse_chapter_number("244") == 244.0
    assert parse_chapter_number("Chapter 67.5") == 67.5
    assert parse_chapter_number("67-5-eng-li") == 67.5
    assert parse_chapter_number("extra") is None


def test_format_chapter_number():
    assert format_chapter_number(12.0) == "12"
    assert format_chapter_number(67.5) == "67.5"


def test_parse_relative_time_accumulates_units():
    assert parse_relative_time("31 minutes ago", NOW) == NOW - timedelta(minutes=31)
    assert parse_relative_time("5 days, 23 hours ago", NOW) == NOW - timedelta(days=5, hours=23)
    assert parse_relative_time("a day ago", NOW) == NOW - timedelta(days=1)
    assert parse_relative_time("just now", NOW) == NOW
    assert parse_relative_time("2 months ago", NOW) == datetime(2025, 12, 20, 12, 0, tzinfo=timezone.utc)
    assert parse_relative_time("someday", NOW) is None


def test_parse_absolute_date_variants():
    assert parse_absolute_date("Jan 12, 2026") == datetime(2026, 1, 12, tzinfo=timezone.utc)
    assert parse_absolute_date("February 3rd 2026") == datetime(2026, 2, 3, tzinfo=timezone.utc)
    assert parse_absolute_date("February 16, 2026 3:49 PM") == datetime(2026, 2, 16, 15, 49, tzinfo=timezone.utc)
    assert parse_absolute_date("Sept. 3, 2025, 11 AM") == datetime(2025, 9, 3, 11, 0, tzinfo=timezone.utc)
    assert parse_absolute_date("Feb 30, 2026") is None
    assert parse_absolute_date("no date here") is None


def test_parse_iso_datetime_normalizes_to_utc():
    assert parse_iso_datetime("2026-02-11T16:44:55.000000Z") == datetime(2026, 2, 11, 16, 44, 55, tzinfo=timezone.utc)
    assert parse_iso_datetime("2026-02-11T18:00:00+02:00") == datetime(2026, 2, 11, 16, 0, tzinfo=timezone.utc)
    assert parse_iso_datetime("garbage") is None


def test_find_date_uses_text_order():
    text = "Chapter 341 31 minutes ago, Chapter 340 Feb 11, 2026"
    assert find_date(text, NOW) == NOW - timedelta(minutes=31)
    assert find_date(text, NOW, last=True) == datetime(2026, 2, 11, tzinfo=timezone.utc)


def test_latest_chapter_release_prefers_date_after_winning_link():
    body = """
      <a href="/read/x/en/chapter-341"><span>Chapter 341</span><span>31 minutes ago</span></a>
      <a href="/read/x/en/chapter-340"><span>Chapter 340</span><span>Feb 11, 2026</span></a>
    """
    release = latest_chapter_release(body, re.compile(r"/chapter-(\d+)"), after=60, before=0, now=NOW)
    assert release.chapter == 341
    assert release.released_at == NOW - timedelta(minutes=31)


def test_latest_chapter_release_without_links():
    release = latest_chapter_release("<p>nothing</p>", re.compile(r"/chapter-(\d+)"), now=NOW)
    assert release.chapter is None
    assert release.released_at is None


def test_latest_chapter_release_tie_prefers_occurrence_with_date():
    filler = "x" * 200
    body = (
        '<a href="/read/x/en/chapter-12">Chapter 12</a>'
        f"<p>{filler}</p>"
        '<a href="/read/x/en/chapter-12">Chapter 12 <span>Feb 11, 2026</span></a>'
    )
    release = latest_chapter_release(body, re.compile(r"/chapter-(\d+)"), after=60, before=0, now=NOW)
    assert release.chapter == 12
    assert release.released_at == datetime(2026, 2, 11, tzinfo=timezone.utc)


@pytest.mark.parametrize("raw,expected", [
    ("2026-02-11T16:44:55.123456789Z", datetime(2026, 2, 11, 16, 44, 55, 123456, tzinfo=timezone.utc)),
    ("2026-02-11T16:44:55.5Z", datetime(2026, 2, 11, 16, 44, 55, 500000, tzinfo=timezone.utc)),
    ("2026-02-11T18:44:55.12+02:00", datetime(2026, 2, 11, 16, 44, 55, 120000, tzinfo=timezone.utc)),
])
def test_parse_iso_datetime_accepts_any_fraction_length(raw, expected):
    assert parse_iso_datetime(raw) == expected


def test_host_allowed_accepts_subdomains_only():
    assert host_allowed("www.mgeko.cc", ["mgeko.cc"])
    assert host_allowed("MGEKO.CC", ["mgeko.cc"])
    assert not host_allowed("evilmgeko.cc", ["mgeko.cc"])
    assert not host_allowed("", ["mgeko.cc"])


def test_absolute_url():
    assert absolute_url("https://mangafire.to", "/manga/x") == "https://mangafire.to/manga/x"
    assert absolute_url("https://mangafire.to", "//cdn.example/a.jpg") == "https://cdn.example/a.jpg"
    assert absolute_url("https://mangafire.to", "https://cdn.example/a.jpg") == "https://cdn.example/a.jpg"
    assert absolute_url("https://mangafire.to", "") == ""


def test_unwrap_image_proxy():
    proxied = "https://flamecomics.xyz/_next/image?url=https%3A%2F%2Fcdn.flamecomics.xyz%2Fa.png&w=1920"
    assert unwrap_image_proxy(proxied, ["flamecomics.xyz"]) == "https://cdn.flamecomics.xyz/a.png"
    assert unwrap_image_proxy(proxied, ["example.com"]) == proxied
    assert unwrap_image_proxy("https://cdn.flamecomics.xyz/a.png") == "https://cdn.flamecomics.xyz/a.png"


def test_page_title_strips_suffix_and_falls_back_to_identifier():
    soup = make_soup('<head><meta property="og:title" content="Nano Machine - Asura Scans"></head>')
    assert page_title(soup, ("- Asura Scans",)) == "Nano Machine"
    assert page_title(make_soup("<html></html>"), (), fallback_id="one-piecee.dkw", strip_dot_suffix=True) == "One Piecee"


def test_prettify_identifier():
    assert prettify_identifier("solo-leveling") == "Solo Leveling"


def test_chapter_matches_tolerance():
    assert chapter_matches(67.5, 67.5)
    assert not chapter_matches(67.0, 67.5)
    assert not chapter_matches(None, 1.0)
