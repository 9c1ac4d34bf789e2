"""
================================================================================
FlameComics Connector
================================================================================
Flame Comics (flamecomics.xyz) scraping connector.

Series use numeric ids (/series/83). Chapter links carry a hash rather than
the chapter number (/series/83/cd9daeaf1eb9b6ca), so the number and release
time are read from the text rendered inside/after each link. Covers are
served through the Next.js image optimizer and are unwrapped to the CDN URL.
================================================================================
"""

import re
from datetime import datetime
from typing import List, Optional, Tuple
from urllib.parse import urljoin

from .base import BaseConnector, ChapterURLResolver, MangaResult, clamp_limit, validate_chapter
from .context import RequestContext
from .errors import ConnectorError, FormatMismatchError, NotFoundError, RequestCancelled
from .extraction import (
    ChapterRelease,
    chapter_matches,
    collapse_text,
    find_date,
    make_soup,
    meta_content,
    page_title,
    parse_chapter_number,
    path_segments,
    unwrap_image_proxy,
)
from .searchutil import build_related_titles, extract_related_titles, matches_query, normalize, tokenize_normalized

SERIES_ID = re.compile(r"^\d+$")
CHAPTER_NUMBER = re.compile(r"Chapter(?:\s|<!--\s*-->|&nbsp;)+(\d+(?:\.\d+)?)", re.IGNORECASE)
REGION_SUFFIX = re.compile(r"\s+(KR|JP|CN|XX)$")

TITLE_SUFFIXES = ("- Flame Comics", "| Flame Comics")
CHAPTER_WINDOW = 1800


class FlameComicsConnector(BaseConnector, ChapterURLResolver):
    key = "flamecomics"
    name = "FlameComics"
    base_url = "https://flamecomics.xyz"
    allowed_hosts = ["flamecomics.xyz"]

    request_timeout = 12.0

    def _series_url(self, series_id: str) -> str:
        return f"{self.base_url}/series/{series_id}"

    def _series_id(self, raw_url: str) -> str:
        parsed = self._parse_item_url(raw_url)
        segments = path_segments(parsed.path)
        if len(segments) < 2 or segments[0] != "series":
            raise FormatMismatchError("flamecomics url must match /series/{id}")
        if not SERIES_ID.match(segments[1]):
            raise FormatMismatchError(f"invalid flamecomics series id: {segments[1]}")
        return segments[1]

    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        self.client.get_text(self.base_url + "/latest", ctx)

    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        return self._resolve_series(self._series_id(raw_url), ctx)

    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        query = self._require_query(query)
        limit = clamp_limit(limit)
        normalized_query = normalize(query)
        tokens = tokenize_normalized(normalized_query)

        try:
            body = self.client.get_text(self.base_url + "/latest", ctx)
        except RequestCancelled:
            raise
        except ConnectorError as exc:
            self._log(f"⚠️ /latest failed ({exc}), falling back to home page")
            body = self.client.get_text(self.base_url + "/", ctx)

        results: List[MangaResult] = []
        seen = set()
        for series_id, title in collect_series_entries(body):
            if len(results) >= limit:
                break
            if series_id in seen or not matches_query(title, normalized_query, tokens):
                continue
            try:
                results.append(self._resolve_series(series_id, ctx))
            except RequestCancelled:
                raise
            except ConnectorError as exc:
                self._log(f"Skipping series {series_id}: {exc}")
                continue
            seen.add(series_id)

        return results

    def resolve_chapter_url(self, raw_url: str, chapter: float,
                            ctx: Optional[RequestContext] = None) -> str:
        chapter = validate_chapter(chapter)
        series_id = self._series_id(raw_url)
        soup = make_soup(self.client.get_text(self._series_url(series_id), ctx))

        link_pattern = re.compile(r"/series/" + re.escape(series_id) + r"/[a-z0-9]+/?$", re.IGNORECASE)
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not link_pattern.search(href):
                continue
            match = CHAPTER_NUMBER.search(collapse_text(anchor.get_text(" ", strip=True)))
            if match and chapter_matches(parse_chapter_number(match.group(1)), chapter):
                return urljoin(self.base_url + "/", href)

        raise NotFoundError(f"chapter {chapter:g} not listed for series {series_id}")

    # =========================================================================
    # PARSING
    # =========================================================================

    def _resolve_series(self, series_id: str, ctx: Optional[RequestContext]) -> MangaResult:
        body = self.client.get_text(self._series_url(series_id), ctx)
        soup = make_soup(body)

        title = page_title(soup, TITLE_SUFFIXES) or f"Series {series_id}"
        cover = unwrap_image_proxy(
            self._absolute_url(meta_content(soup, "og:image", "twitter:image")),
            proxy_hosts=self.allowed_hosts,
        )
        release = latest_series_release(body, series_id)

        return MangaResult(
            source_key=self.key,
            source_item_id=series_id,
            title=title,
            url=self._series_url(series_id),
            related_titles=build_related_titles(title, extract_related_titles(body)),
            cover_image_url=cover,
            latest_chapter=release.chapter,
            last_updated_at=release.released_at,
        )


def collect_series_entries(body: str) -> List[Tuple[str, str]]:
    """(series_id, title) pairs from /series/<id> anchors, region codes stripped."""
    soup = make_soup(body)
    entries: List[Tuple[str, str]] = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        segments = path_segments(anchor["href"].split("?", 1)[0].split("://", 1)[-1])
        if "series" not in segments:
            continue
        tail = segments[segments.index("series") + 1:]
        if len(tail) != 1 or not SERIES_ID.match(tail[0]):
            continue

        title = REGION_SUFFIX.sub("", collapse_text(anchor.get_text(" ", strip=True))).strip()
        if not title or title.lower() == "all chapters" or title.lower().startswith("chapter "):
            continue
        entry_key = (tail[0], title.lower())
        if entry_key in seen:
            continue
        seen.add(entry_key)
        entries.append((tail[0], title))
    return entries


def latest_series_release(body: str, series_id: str) -> ChapterRelease:
    """
    Highest "Chapter N" found after each /series/<id>/<hash> link, with the
    first date in the same window. Equal chapters keep the latest date.
    """
    link_pattern = re.compile(r"/series/(\d+)/[a-z0-9]+", re.IGNORECASE)
    release = ChapterRelease()
    for match in link_pattern.finditer(body):
        if match.group(1) != series_id:
            continue
        segment = body[match.start():match.start() + CHAPTER_WINDOW]
        number_match = CHAPTER_NUMBER.search(segment)
        if not number_match:
            continue
        number = parse_chapter_number(number_match.group(1))
        if number is None:
            continue
        released: Optional[datetime] = find_date(segment)

        if release.chapter is None or number > release.chapter:
            release = ChapterRelease(number, released, match.start(), match.end())
        elif number == release.chapter and released and (
            release.released_at is None or released > release.released_at
        ):
            release.released_at = released
    return release
