"""
================================================================================
MangaFire Connector
================================================================================
MangaFire (mangafire.to) scraping connector.

MangaFire rate limits aggressively, so this connector paces every request
(150ms watermark), retries 429s with backoff, and falls back to the site's
sitemap tree when the filter/home listings are unavailable or too thin.

URLS:
  - Item page:    https://mangafire.to/manga/<slug>.<code>
  - Reader page:  https://mangafire.to/read/<slug>.<code>/en/chapter-<n>
================================================================================
"""

import re
from typing import Dict, List, Optional, Set

from .base import BaseConnector, ChapterURLResolver, MangaResult, clamp_limit, validate_chapter
from .context import RequestContext
from .errors import ConnectorError, FormatMismatchError, HttpStatusError, RequestCancelled
from .extraction import (
    format_chapter_number,
    latest_chapter_release,
    make_soup,
    meta_content,
    page_title,
    parse_iso_datetime,
    path_segments,
    prettify_identifier,
    strip_title_suffixes,
    collapse_text,
    first_image_src,
)
from .searchutil import (
    build_related_titles,
    contains_all_tokens,
    extract_related_titles,
    normalize,
    significant_tokens,
    split_related_title_block,
    tokenize_normalized,
)
from .sitemap import SitemapIndex, fallback_candidate_limit, match_sitemap_ids

CHAPTER_LINK = re.compile(r"/chapter-(\d+(?:[.-]\d+)?)", re.IGNORECASE)

TITLE_SUFFIXES = (" Manga - Read Manga Online Free", " - Read Manga Online Free")

UPDATED_META_KEYS = (
    "og:updated_time",
    "article:modified_time",
    "article:published_time",
    "dateModified",
    "datePublished",
)


def manga_id_from_path(path: str) -> Optional[str]:
    """"/manga/one-piecee.dkw" -> "one-piecee.dkw"."""
    segments = path_segments(path)
    if len(segments) >= 2 and segments[0] == "manga" and segments[1].strip():
        return segments[1].strip()
    return None


class MangaFireConnector(BaseConnector, ChapterURLResolver):
    """MangaFire scraper with pacing, 429 backoff and sitemap fallback."""

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    key = "mangafire"
    name = "MangaFire"
    base_url = "https://mangafire.to"
    allowed_hosts = ["mangafire.to"]

    min_request_interval = 0.15
    request_timeout = 12.0
    requires_impersonation = True
    referer_path = "/home"

    def __init__(self, settings=None, session=None):
        super().__init__(settings=settings, session=session)
        self.sitemap = SitemapIndex(
            self.client,
            self.base_url + "/sitemap.xml",
            extract_id=manga_id_from_path,
            ttl=self.settings.sitemap_ttl,
        )

    def _item_url(self, item_id: str) -> str:
        return f"{self.base_url}/manga/{item_id}"

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        self.client.get_text(self.base_url + "/home", ctx)

    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        parsed = self._parse_item_url(raw_url)
        item_id = manga_id_from_path(parsed.path)
        if not item_id:
            raise FormatMismatchError("mangafire url must match /manga/{id}")

        body = self.client.get_text(self._item_url(item_id), ctx)
        result = MangaResult(
            source_key=self.key,
            source_item_id=item_id,
            title=prettify_identifier(item_id, strip_dot_suffix=True),
            url=self._item_url(item_id),
        )
        self._apply_detail_page(result, body)
        return result

    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        query = self._require_query(query).lower()
        limit = clamp_limit(limit)

        try:
            body = self.client.get_text(self.base_url + "/filter", ctx, params={"keyword": query})
        except RequestCancelled:
            raise
        except ConnectorError as exc:
            self._log(f"⚠️ Filter page failed ({exc}), trying /home")
            try:
                body = self.client.get_text(self.base_url + "/home", ctx)
            except HttpStatusError as home_exc:
                if home_exc.status_code != 429:
                    raise
                self._log("⏳ Listings rate limited, searching sitemap index")
                return self._sitemap_matches([], query, limit, set(), ctx)

        results: List[MangaResult] = []
        seen: Set[str] = set()
        for entry in parse_search_entries(body):
            if not matches_search_query(entry["title"], entry["id"], query):
                continue
            results.append(MangaResult(
                source_key=self.key,
                source_item_id=entry["id"],
                title=entry["title"],
                url=self._item_url(entry["id"]),
                cover_image_url=self._absolute_url(entry["cover"]),
            ))
            seen.add(entry["id"])
            if len(results) >= limit:
                break

        for result in results:
            self._enrich(result, ctx)

        if len(results) < limit:
            results = self._sitemap_matches(results, query, limit, seen, ctx)

        return results

    def resolve_chapter_url(self, raw_url: str, chapter: float,
                            ctx: Optional[RequestContext] = None) -> str:
        chapter = validate_chapter(chapter)
        parsed = self._parse_item_url(raw_url)
        segments = path_segments(parsed.path)
        if len(segments) < 2 or segments[0] not in ("manga", "read"):
            raise FormatMismatchError("mangafire url must match /manga/{id} or /read/{id}")
        item_id = segments[1].strip()
        return f"{self.base_url}/read/{item_id}/en/chapter-{format_chapter_number(chapter)}"

    # =========================================================================
    # SITEMAP FALLBACK
    # =========================================================================

    def _sitemap_matches(self, results: List[MangaResult], query: str, limit: int,
                         seen: Set[str], ctx: Optional[RequestContext]) -> List[MangaResult]:
        remaining = limit - len(results)
        if remaining <= 0:
            return results

        try:
            all_ids = self.sitemap.ids(ctx)
        except RequestCancelled:
            raise
        except ConnectorError as exc:
            self._log(f"⚠️ Sitemap fallback unavailable: {exc}")
            return results

        candidates = match_sitemap_ids(all_ids, query, fallback_candidate_limit(remaining), exclude=seen)
        for item_id in candidates:
            candidate = MangaResult(
                source_key=self.key,
                source_item_id=item_id,
                title=prettify_identifier(item_id, strip_dot_suffix=True),
                url=self._item_url(item_id),
            )
            self._enrich(candidate, ctx)
            if not matches_search_query(candidate.title, item_id, query):
                continue
            results.append(candidate)
            seen.add(item_id)
            if len(results) >= limit:
                break
        return results

    def _enrich(self, result: MangaResult, ctx: Optional[RequestContext]) -> None:
        """Fill title/chapter/date/cover from the item page; failures leave the result as is."""
        try:
            body = self.client.get_text(self._item_url(result.source_item_id), ctx)
        except RequestCancelled:
            raise
        except ConnectorError as exc:
            self._log(f"Could not enrich {result.source_item_id}: {exc}")
            return
        self._apply_detail_page(result, body)

    # =========================================================================
    # PARSING
    # =========================================================================

    def _apply_detail_page(self, result: MangaResult, body: str) -> None:
        soup = make_soup(body)

        title = strip_title_suffixes(meta_content(soup, "og:title"), TITLE_SUFFIXES)
        if not title:
            title = page_title(soup, TITLE_SUFFIXES)
        if title:
            result.title = title

        if not result.cover_image_url:
            cover = meta_content(soup, "og:image") or first_image_src(soup.select_one(".poster"))
            result.cover_image_url = self._absolute_url(cover)

        release = latest_chapter_release(body, CHAPTER_LINK, after=800, before=500)
        if release.chapter is not None:
            result.latest_chapter = release.chapter
        if release.released_at is not None:
            result.last_updated_at = release.released_at
        if result.last_updated_at is None:
            result.last_updated_at = parse_iso_datetime(meta_content(soup, *UPDATED_META_KEYS))

        aliases = extract_related_titles(body)
        for heading in soup.select(".info h6"):
            aliases.extend(split_related_title_block(heading.get_text(" ", strip=True)))
        result.related_titles = build_related_titles(result.title, aliases)


def parse_search_entries(body: str) -> List[Dict[str, str]]:
    """
    Collect {id, title, cover} from every /manga/<id> anchor on a listing page.

    Sites often render separate cover and title anchors for the same item,
    so entries are merged by id. Sorted by title.
    """
    soup = make_soup(body)
    entries: Dict[str, Dict[str, str]] = {}

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].split("#", 1)[0].split("?", 1)[0]
        if not href.startswith("/manga/"):
            continue
        item_id = manga_id_from_path(href)
        if not item_id:
            continue

        entry = entries.setdefault(item_id, {"id": item_id, "title": "", "cover": ""})
        if not entry["title"]:
            entry["title"] = _anchor_title(anchor)
        if not entry["cover"]:
            entry["cover"] = first_image_src(anchor)

    for entry in entries.values():
        if not entry["title"]:
            entry["title"] = prettify_identifier(entry["id"], strip_dot_suffix=True)

    return sorted(entries.values(), key=lambda entry: entry["title"])


def _anchor_title(anchor) -> str:
    text = collapse_text(anchor.get_text(" ", strip=True))
    if text:
        return text
    if (anchor.get("title") or "").strip():
        return anchor["title"].strip()
    img = anchor.find("img")
    if img is not None and (img.get("alt") or "").strip():
        return img["alt"].strip()
    return ""


def matches_search_query(title: str, item_id: str, query: str) -> bool:
    """
    Substring match on the title, else all query tokens in the title or id,
    else all non-stop-word tokens in the title or id.
    """
    normalized_query = normalize(query)
    normalized_title = normalize(title)
    if normalized_query and normalized_query in normalized_title:
        return True

    normalized_id = normalize(item_id.split(".", 1)[0] if item_id.find(".") > 0 else item_id)
    tokens = tokenize_normalized(normalized_query)
    for token_set in (tokens, significant_tokens(tokens)):
        if not token_set:
            continue
        if contains_all_tokens(normalized_title, token_set) or contains_all_tokens(normalized_id, token_set):
            return True
    return False
