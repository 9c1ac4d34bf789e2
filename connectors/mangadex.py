"""
================================================================================
MangaDex Connector
================================================================================
MangaDex connector backed by the public JSON API (api.mangadex.org).

API: https://api.mangadex.org/docs/
  - GET /manga?title=...&includes[]=cover_art   search
  - GET /manga/{id}?includes[]=cover_art        details
  - GET /manga/{id}/feed                         chapters (English, newest first)
================================================================================
"""

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .base import BaseConnector, ChapterURLResolver, MangaResult, clamp_limit, validate_chapter
from .context import RequestContext
from .errors import ConnectorError, DecodeError, FormatMismatchError, NotFoundError, RequestCancelled
from .extraction import chapter_matches, parse_iso_datetime, path_segments
from .searchutil import any_candidate_matches, exclude_titles, filter_english_alphabet_names, normalize, tokenize_normalized

TITLE_ID = re.compile(r"^[0-9a-fA-F-]{32,36}$")
TITLE_LANGUAGES = ("en", "ja-ro", "ja", "pt-br", "es")
CONTENT_RATINGS = ("safe", "suggestive", "erotica", "pornographic")
COVER_BASE_URL = "https://uploads.mangadex.org/covers"


def parse_api_chapter(raw: Any) -> Optional[float]:
    """MangaDex chapter strings ("7", "7.5"); anything non-numeric is None."""
    value = str(raw or "").strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def pick_best_title(titles: Optional[Dict[str, str]]) -> str:
    """Preferred language first, then any non-empty localized title."""
    if not titles:
        return ""
    for language in TITLE_LANGUAGES:
        value = (titles.get(language) or "").strip()
        if value:
            return value
    for value in titles.values():
        if (value or "").strip():
            return value.strip()
    return ""


def english_related_titles(primary: str, titles: Optional[Dict[str, str]],
                           alt_titles: Optional[Iterable[Dict[str, str]]]) -> List[str]:
    candidates = list((titles or {}).values())
    for alt in alt_titles or ():
        if isinstance(alt, dict):
            candidates.extend(alt.values())
    return exclude_titles(filter_english_alphabet_names(candidates), primary)


def cover_image_url(manga_id: str, relationships: Optional[List[Dict[str, Any]]]) -> str:
    for relationship in relationships or ():
        if relationship.get("type") != "cover_art":
            continue
        file_name = ((relationship.get("attributes") or {}).get("fileName") or "").strip()
        if file_name:
            return f"{COVER_BASE_URL}/{manga_id}/{file_name}.256.jpg"
    return ""


class MangaDexConnector(BaseConnector, ChapterURLResolver):
    key = "mangadex"
    name = "MangaDex"
    base_url = "https://mangadex.org"
    api_url = "https://api.mangadex.org"
    allowed_hosts = ["mangadex.org"]

    request_timeout = 10.0

    def _title_id(self, raw_url: str) -> str:
        parsed = self._parse_item_url(raw_url)
        segments = path_segments(parsed.path)
        if len(segments) < 2 or segments[0] != "title":
            raise FormatMismatchError("mangadex url must match /title/{id}")
        title_id = segments[1].strip()
        if not TITLE_ID.match(title_id):
            raise FormatMismatchError("invalid mangadex title id")
        return title_id

    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        self.client.fetch(self.api_url + "/ping", ctx)

    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        title_id = self._title_id(raw_url)
        payload = self.client.get_json(
            f"{self.api_url}/manga/{title_id}", ctx, params=[("includes[]", "cover_art")]
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise DecodeError("mangadex response has no data")

        manga_id = (data.get("id") or title_id).strip()
        attributes = data.get("attributes") or {}
        title, related = self._titles(attributes)

        latest = parse_api_chapter(attributes.get("lastChapter"))
        feed_latest, released_at = None, None
        try:
            feed_latest, released_at = self._latest_from_feed(manga_id, ctx)
        except RequestCancelled:
            raise
        except ConnectorError as exc:
            self._log(f"Feed lookup failed for {manga_id}: {exc}")
        if latest is None:
            latest = feed_latest

        return MangaResult(
            source_key=self.key,
            source_item_id=manga_id,
            title=title,
            url=f"{self.base_url}/title/{manga_id}",
            related_titles=related,
            cover_image_url=cover_image_url(manga_id, data.get("relationships")),
            latest_chapter=latest,
            last_updated_at=released_at,
        )

    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        query = self._require_query(query)
        limit = clamp_limit(limit)
        normalized_query = normalize(query)
        tokens = tokenize_normalized(normalized_query)

        payload = self.client.get_json(self.api_url + "/manga", ctx, params=[
            ("title", query),
            ("limit", str(min(max(limit * 4, limit), 50))),
            ("includes[]", "cover_art"),
        ])
        items = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise DecodeError("mangadex search response has no data")

        results: List[MangaResult] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            manga_id = str(item.get("id") or "").strip()
            if not manga_id:
                continue
            attributes = item.get("attributes") or {}
            title, related = self._titles(attributes)
            if not any_candidate_matches([title] + related, normalized_query, tokens):
                continue

            latest = parse_api_chapter(attributes.get("lastChapter"))
            if latest is None:
                try:
                    latest, _ = self._latest_from_feed(manga_id, ctx)
                except RequestCancelled:
                    raise
                except ConnectorError as exc:
                    self._log(f"Feed lookup failed for {manga_id}: {exc}")

            results.append(MangaResult(
                source_key=self.key,
                source_item_id=manga_id,
                title=title,
                url=f"{self.base_url}/title/{manga_id}",
                related_titles=related,
                cover_image_url=cover_image_url(manga_id, item.get("relationships")),
                latest_chapter=latest,
            ))
            if len(results) >= limit:
                break
        return results

    def resolve_chapter_url(self, raw_url: str, chapter: float,
                            ctx: Optional[RequestContext] = None) -> str:
        chapter = validate_chapter(chapter)
        title_id = self._title_id(raw_url)
        for entry in self._feed(title_id, 500, ctx):
            number = parse_api_chapter((entry.get("attributes") or {}).get("chapter"))
            chapter_id = (entry.get("id") or "").strip()
            if chapter_id and chapter_matches(number, chapter):
                return f"{self.base_url}/chapter/{chapter_id}"
        raise NotFoundError(f"chapter {chapter:g} not found")

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _titles(self, attributes: Dict[str, Any]) -> Tuple[str, List[str]]:
        titles = attributes.get("title") or {}
        title = pick_best_title(titles)
        related = english_related_titles(title, titles, attributes.get("altTitles"))
        if not title:
            title = related[0] if related else "Untitled"
            related = exclude_titles(related, title)
        return title, related

    def _feed(self, manga_id: str, limit: int, ctx: Optional[RequestContext]) -> List[Dict[str, Any]]:
        params = [
            ("limit", str(limit)),
            ("offset", "0"),
            ("order[chapter]", "desc"),
            ("includeExternalUrl", "0"),
            ("translatedLanguage[]", "en"),
        ]
        params.extend(("contentRating[]", rating) for rating in CONTENT_RATINGS)
        payload = self.client.get_json(f"{self.api_url}/manga/{manga_id}/feed", ctx, params=params)
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise DecodeError("mangadex feed response has no data")
        return [entry for entry in data if isinstance(entry, dict)]

    def _latest_from_feed(self, manga_id: str,
                          ctx: Optional[RequestContext]) -> Tuple[Optional[float], Optional[datetime]]:
        latest: Optional[float] = None
        released_at: Optional[datetime] = None
        for entry in self._feed(manga_id, 100, ctx):
            attributes = entry.get("attributes") or {}
            number = parse_api_chapter(attributes.get("chapter"))
            if number is None:
                continue
            if latest is None or number > latest:
                latest = number
                released_at = None
                for key in ("publishAt", "readableAt", "createdAt"):
                    released_at = parse_iso_datetime(attributes.get(key) or "")
                    if released_at:
                        break
        return latest, released_at
