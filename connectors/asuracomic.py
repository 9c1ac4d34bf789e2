"""
================================================================================
AsuraComic Connector
================================================================================
Asura Scans (asuracomic.net) scraping connector.

Series pages are Next.js renders: chapter links look like
/series/<id>/chapter/<n> (older markup uses bare /chapter/<n>), release dates
appear as "February 11th 2026" next to each link, and the embedded flight
data (self.__next_f) carries exact published_at timestamps.
================================================================================
"""

import re
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlparse

from .base import BaseConnector, ChapterURLResolver, MangaResult, clamp_limit, validate_chapter
from .context import RequestContext
from .errors import ConnectorError, FormatMismatchError, NotFoundError, RequestCancelled
from .extraction import (
    ABSOLUTE_DATE,
    chapter_matches,
    collapse_text,
    find_chapter_link,
    latest_chapter_release,
    make_soup,
    meta_content,
    page_title,
    parse_absolute_date,
    parse_chapter_number,
    parse_iso_datetime,
    path_segments,
)
from .searchutil import any_candidate_matches, build_related_titles, extract_related_titles, normalize, tokenize_normalized

SERIES_ID = re.compile(r"^[a-z0-9-]+$")
BARE_CHAPTER_LINK = re.compile(r"(?:^|/|[a-z0-9-]+/)chapter/(\d+(?:\.\d+)?)", re.IGNORECASE)
UPDATED_ON = re.compile(
    r"Updated\s+On\s*</[^>]+>\s*<[^>]+>\s*([A-Za-z]+\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4})",
    re.IGNORECASE,
)
PUBLISHED_AT = re.compile(
    r'\\?"name\\?"\s*:\s*\\?"?(\d+(?:\.\d+)?)\\?"?[^{}]*?\\?"published_at\\?"\s*:\s*\\?"([^"\\]+)',
    re.IGNORECASE,
)

TITLE_SUFFIXES = ("- Asura Scans", "| Asura Scans")
IGNORED_ANCHOR_TEXT = {"poster", "image"}


def is_valid_series_id(series_id: str) -> bool:
    return bool(series_id) and bool(SERIES_ID.match(series_id))


def chapter_link_pattern(series_id: str):
    return re.compile(r"(?:/series/)?" + re.escape(series_id) + r"/chapter/(\d+(?:\.\d+)?)", re.IGNORECASE)


class AsuraComicConnector(BaseConnector, ChapterURLResolver):
    key = "asuracomic"
    name = "AsuraComic"
    base_url = "https://asuracomic.net"
    allowed_hosts = ["asuracomic.net"]

    request_timeout = 12.0
    requires_impersonation = True

    def _series_url(self, series_id: str) -> str:
        return f"{self.base_url}/series/{series_id}"

    def _series_id(self, raw_url: str) -> str:
        parsed = self._parse_item_url(raw_url)
        segments = path_segments(parsed.path)
        if len(segments) < 2 or segments[0] != "series":
            raise FormatMismatchError("asuracomic url must match /series/{id}")
        series_id = segments[1].strip()
        if not is_valid_series_id(series_id):
            raise FormatMismatchError(f"invalid asuracomic series id: {series_id}")
        return series_id

    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        self.client.get_text(self.base_url + "/series", ctx, params={"page": 1})

    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        return self._resolve_series(self._series_id(raw_url), ctx)

    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        query = self._require_query(query)
        limit = clamp_limit(limit)
        normalized_query = normalize(query)
        tokens = tokenize_normalized(normalized_query)

        body = self.client.get_text(self.base_url + "/series", ctx, params={"page": 1, "name": query})
        listing = collect_series_anchors(body, self.base_url)

        results: List[MangaResult] = []
        for series_id, anchor_title in listing.items():
            if len(results) >= limit:
                break
            candidates = [series_id.replace("-", " ")]
            if anchor_title:
                candidates.append(anchor_title)
            if not any_candidate_matches(candidates, normalized_query, tokens):
                continue

            try:
                resolved = self._resolve_series(series_id, ctx)
            except RequestCancelled:
                raise
            except ConnectorError as exc:
                self._log(f"Skipping {series_id}: {exc}")
                continue

            names = [resolved.title, series_id.replace("-", " ")] + resolved.related_titles
            if any_candidate_matches(names, normalized_query, tokens):
                results.append(resolved)

        return results

    def resolve_chapter_url(self, raw_url: str, chapter: float,
                            ctx: Optional[RequestContext] = None) -> str:
        chapter = validate_chapter(chapter)
        series_id = self._series_id(raw_url)
        soup = make_soup(self.client.get_text(self._series_url(series_id), ctx))

        href = find_chapter_link(soup, chapter, chapter_link_pattern(series_id))
        if not href:
            href = find_chapter_link(soup, chapter, BARE_CHAPTER_LINK)
        if not href:
            raise NotFoundError(f"chapter {chapter:g} not listed for {series_id}")
        return urljoin(self._series_url(series_id) + "/", href)

    # =========================================================================
    # PARSING
    # =========================================================================

    def _resolve_series(self, series_id: str, ctx: Optional[RequestContext]) -> MangaResult:
        body = self.client.get_text(self._series_url(series_id), ctx)
        soup = make_soup(body)

        title = page_title(soup, TITLE_SUFFIXES, fallback_id=series_id)
        cover = meta_content(soup, "og:image", "twitter:image")

        pattern = chapter_link_pattern(series_id)
        if not pattern.search(body):
            pattern = BARE_CHAPTER_LINK
        release = latest_chapter_release(body, pattern, after=2200, before=0)

        released_at = release.released_at
        if release.chapter is not None:
            exact = published_at_by_chapter(body)
            for chapter, published in exact.items():
                if chapter_matches(chapter, release.chapter):
                    released_at = published
                    break
        if released_at is None:
            released_at = last_updated_at(body)

        return MangaResult(
            source_key=self.key,
            source_item_id=series_id,
            title=title,
            url=self._series_url(series_id),
            related_titles=build_related_titles(title, extract_related_titles(body)),
            cover_image_url=self._absolute_url(cover),
            latest_chapter=release.chapter,
            last_updated_at=released_at,
        )


def collect_series_anchors(body: str, base_url: str) -> Dict[str, str]:
    """Ordered {series_id: anchor title} from every /series/<id> link on a listing."""
    soup = make_soup(body)
    listing: Dict[str, str] = {}
    for anchor in soup.find_all("a", href=True):
        path = urlparse(urljoin(base_url + "/", anchor["href"].strip())).path
        segments = path_segments(path)
        if len(segments) != 2 or segments[0] != "series":
            continue
        series_id = segments[1].lower()
        if not is_valid_series_id(series_id):
            continue
        text = _anchor_title(anchor.get_text(" ", strip=True))
        if series_id not in listing or (text and not listing[series_id]):
            listing[series_id] = text
    return listing


def _anchor_title(raw: str) -> str:
    text = collapse_text(raw)
    if text.lower() in IGNORED_ANCHOR_TEXT:
        return ""
    cut = text.lower().find(" chapter ")
    if cut > 0:
        text = text[:cut].strip()
    return text


def published_at_by_chapter(body: str) -> Dict[float, datetime]:
    """Exact chapter timestamps from the embedded flight data."""
    found: Dict[float, datetime] = {}
    for match in PUBLISHED_AT.finditer(body):
        chapter = parse_chapter_number(match.group(1))
        published = parse_iso_datetime(match.group(2))
        if chapter is not None and published is not None:
            found[chapter] = published
    return found


def last_updated_at(body: str) -> Optional[datetime]:
    """"Updated On" label, else the most recent date anywhere on the page."""
    match = UPDATED_ON.search(body)
    if match:
        parsed = parse_absolute_date(match.group(1))
        if parsed:
            return parsed

    latest = None
    for date_match in ABSOLUTE_DATE.finditer(body):
        parsed = parse_absolute_date(date_match.group(0))
        if parsed and (latest is None or parsed > latest):
            latest = parsed
    return latest
