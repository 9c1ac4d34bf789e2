"""
================================================================================
Mgeko Connector
================================================================================
Mgeko (mgeko.cc) scraping connector.

URLS:
  - Item page:     https://www.mgeko.cc/manga/<slug>/
  - All chapters:  https://www.mgeko.cc/manga/<slug>/all-chapters/
  - Reader page:   https://www.mgeko.cc/reader/en/<slug>-chapter-<n>-eng-li/

Chapter tokens use "-" as the decimal separator ("240-2-eng-li" is 240.2).
Each chapter row carries a <time datetime="Feb. 21, 2026, 6:00 p.m."> plus a
relative "5 days, 23 hours" label used when the datetime is unusable.
================================================================================
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import quote

from .base import BaseConnector, ChapterURLResolver, MangaResult, clamp_limit, validate_chapter
from .context import RequestContext
from .errors import ConnectorError, FormatMismatchError, NotFoundError, RequestCancelled
from .extraction import (
    chapter_matches,
    collapse_text,
    make_soup,
    meta_content,
    parse_absolute_date,
    parse_chapter_number,
    parse_relative_time,
    path_segments,
    prettify_identifier,
    utc_now,
)
from .searchutil import any_candidate_matches, build_related_titles, extract_related_titles, normalize, tokenize_normalized

CHAPTER_HREF = re.compile(r"^/reader/en/.+-chapter-(\d+(?:-\d+)?)", re.IGNORECASE)
SEARCH_CHAPTER = re.compile(r"Chapters?\s*(\d+(?:-\d+)?)", re.IGNORECASE)
ALL_CHAPTERS_SUFFIX = re.compile(r"\s*\[all\s+chapters?\]\s*$", re.IGNORECASE)
AGO_SUFFIX = re.compile(r"\s+ago$", re.IGNORECASE)
MERIDIEM = re.compile(r"\b([ap])\.?m\.?(?=\s|$)", re.IGNORECASE)


@dataclass
class ChapterEntry:
    chapter: float
    url: str
    updated_at: Optional[datetime] = None


def slug_from_path(path: str) -> Optional[str]:
    segments = path_segments(path)
    if len(segments) >= 2 and segments[0] == "manga" and segments[1].strip():
        return segments[1].strip()
    return None


def parse_mgeko_datetime(raw: str) -> Optional[datetime]:
    """"Feb. 21, 2026, 6:00 p.m." / "Sept. 3, 2025, 11 a.m." -> UTC datetime."""
    value = collapse_text(raw)
    if not value:
        return None
    value = MERIDIEM.sub(lambda match: match.group(1).upper() + "M", value)
    return parse_absolute_date(value)


class MgekoConnector(BaseConnector, ChapterURLResolver):
    key = "mgeko"
    name = "Mgeko"
    base_url = "https://www.mgeko.cc"
    allowed_hosts = ["mgeko.cc"]

    request_timeout = 12.0

    def _manga_url(self, slug: str) -> str:
        return f"{self.base_url}/manga/{slug}/"

    def _slug(self, raw_url: str) -> str:
        parsed = self._parse_item_url(raw_url)
        slug = slug_from_path(parsed.path)
        if not slug:
            raise FormatMismatchError("mgeko url must match /manga/{id}")
        return slug

    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        self.client.get_text(self.base_url + "/browse-comics/", ctx)

    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        slug = self._slug(raw_url)
        body = self.client.get_text(f"{self.base_url}/manga/{quote(slug)}/", ctx)
        soup = make_soup(body)

        title = extract_title(soup, slug)
        cover = meta_content(soup, "og:image")
        if not cover:
            for img in soup.select("img.lazy[data-src]"):
                if "manga_covers" in img["data-src"]:
                    cover = img["data-src"].strip()
                    break

        latest, updated_at = None, None
        try:
            latest, updated_at = select_latest_chapter(self._chapter_entries(slug, ctx))
        except RequestCancelled:
            raise
        except ConnectorError as exc:
            self._log(f"All-chapters page unavailable for {slug}: {exc}")
        if latest is None:
            fallback_latest, fallback_updated = select_latest_chapter(parse_chapter_entries(body))
            latest = fallback_latest
            updated_at = updated_at or fallback_updated

        return MangaResult(
            source_key=self.key,
            source_item_id=slug,
            title=title,
            url=self._manga_url(slug),
            related_titles=build_related_titles(title, alternative_titles(soup) + extract_related_titles(body)),
            cover_image_url=self._absolute_url(cover),
            latest_chapter=latest,
            last_updated_at=updated_at,
        )

    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        query = self._require_query(query)
        limit = clamp_limit(limit)
        normalized_query = normalize(query)
        tokens = tokenize_normalized(normalized_query)
        if not tokens:
            return []

        body = self.client.get_text(self.base_url + "/search/", ctx, params={"search": query})

        results: List[MangaResult] = []
        for entry in parse_search_entries(body):
            if not any_candidate_matches([entry["title"], entry["slug"]], normalized_query, tokens):
                continue
            results.append(MangaResult(
                source_key=self.key,
                source_item_id=entry["slug"],
                title=entry["title"],
                url=self._manga_url(entry["slug"]),
                cover_image_url=self._absolute_url(entry["cover"]),
                latest_chapter=entry["latest_chapter"],
                last_updated_at=entry["updated_at"],
            ))
            if len(results) >= limit:
                break
        return results

    def resolve_chapter_url(self, raw_url: str, chapter: float,
                            ctx: Optional[RequestContext] = None) -> str:
        chapter = validate_chapter(chapter)
        slug = self._slug(raw_url)
        for entry in self._chapter_entries(slug, ctx):
            if chapter_matches(entry.chapter, chapter):
                return entry.url
        raise NotFoundError(f"chapter {chapter:g} not found")

    def _chapter_entries(self, slug: str, ctx: Optional[RequestContext]) -> List[ChapterEntry]:
        body = self.client.get_text(f"{self.base_url}/manga/{quote(slug)}/all-chapters/", ctx)
        entries = parse_chapter_entries(body)
        if not entries:
            raise NotFoundError("no chapter entries found")
        for entry in entries:
            entry.url = self._absolute_url(entry.url)
        return entries


# =============================================================================
# PARSING
# =============================================================================

def extract_title(soup, slug: str) -> str:
    heading = soup.select_one("h1.novel-title")
    if heading is not None:
        title = collapse_text(heading.get_text(" ", strip=True))
        if title:
            return title
    title = ALL_CHAPTERS_SUFFIX.sub("", meta_content(soup, "title")).strip()
    return title or prettify_identifier(slug) or "Untitled"


def alternative_titles(soup) -> List[str]:
    heading = soup.select_one("h2.alternative-title")
    if heading is None:
        return []
    raw = collapse_text(heading.get_text(" ", strip=True))
    return [part.strip() for part in raw.split(",") if part.strip()]


def parse_search_entries(body: str, now: Optional[datetime] = None) -> List[Dict]:
    """Entries from li.novel-item blocks, merged by slug and sorted by title."""
    now = now or utc_now()
    soup = make_soup(body)
    entries: Dict[str, Dict] = {}

    for item in soup.select("li.novel-item"):
        anchor, slug = None, None
        for candidate in item.find_all("a", href=True):
            href = candidate["href"].strip()
            if href.startswith("/manga/"):
                slug = slug_from_path(href.split("?", 1)[0])
                if slug:
                    anchor = candidate
                    break
        if anchor is None:
            continue

        heading = item.select_one("h4.novel-title")
        title = collapse_text(heading.get_text(" ", strip=True)) if heading is not None else ""
        if not title:
            title = collapse_text(anchor.get("title", ""))

        cover = ""
        img = item.find("img")
        if img is not None:
            cover = (img.get("data-src") or img.get("src") or "").strip()
        if "loading.gif" in cover.lower():
            cover = ""

        latest_chapter = None
        for strong in item.find_all("strong"):
            match = SEARCH_CHAPTER.search(strong.get_text(" ", strip=True))
            if match:
                latest_chapter = parse_chapter_number(match.group(1))
                break

        updated_at = None
        clock = item.select_one("i.fa-clock")
        if clock is not None and clock.parent is not None:
            label = AGO_SUFFIX.sub("", collapse_text(clock.parent.get_text(" ", strip=True)))
            updated_at = parse_relative_time(label, now)

        entry = entries.setdefault(slug, {
            "slug": slug, "title": "", "cover": "", "latest_chapter": None, "updated_at": None,
        })
        entry["title"] = entry["title"] or title
        entry["cover"] = entry["cover"] or cover
        if entry["latest_chapter"] is None:
            entry["latest_chapter"] = latest_chapter
        if entry["updated_at"] is None:
            entry["updated_at"] = updated_at

    for entry in entries.values():
        if not entry["title"]:
            entry["title"] = prettify_identifier(entry["slug"])
    return sorted(entries.values(), key=lambda entry: entry["title"])


def parse_chapter_entries(body: str, now: Optional[datetime] = None) -> List[ChapterEntry]:
    now = now or utc_now()
    soup = make_soup(body)
    entries: List[ChapterEntry] = []
    seen = set()

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        match = CHAPTER_HREF.search(href)
        if not match or href in seen:
            continue
        number = parse_chapter_number(match.group(1))
        if number is None:
            continue
        seen.add(href)

        updated_at = None
        stamp = anchor.find("time", attrs={"datetime": True})
        if stamp is not None:
            updated_at = parse_mgeko_datetime(stamp["datetime"])
        if updated_at is None:
            stats = anchor.select_one(".chapter-stats")
            if stats is not None:
                updated_at = parse_relative_time(collapse_text(stats.get_text(" ", strip=True)), now)

        entries.append(ChapterEntry(chapter=number, url=href, updated_at=updated_at))
    return entries


def select_latest_chapter(entries: List[ChapterEntry]):
    """(highest chapter, its release time); ties keep the latest time."""
    latest: Optional[float] = None
    updated_at: Optional[datetime] = None
    for entry in entries:
        if latest is None or entry.chapter > latest:
            latest, updated_at = entry.chapter, entry.updated_at
        elif chapter_matches(entry.chapter, latest) and entry.updated_at is not None:
            if updated_at is None or entry.updated_at > updated_at:
                updated_at = entry.updated_at
    return latest, updated_at
