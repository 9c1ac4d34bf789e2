"""
================================================================================
MangaPlus Connector
================================================================================
MANGA Plus by Shueisha, via the web app's JSON API.

The API has no search endpoint, so search filters the complete title list
(title_list/allV2, falling back to the older title_list/all). Chapter data
comes from title_detailV3, whose chapter groups carry epoch start times.
================================================================================
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .base import BaseConnector, ChapterURLResolver, MangaResult, clamp_limit, validate_chapter
from .context import RequestContext
from .errors import ConnectorError, DecodeError, FormatMismatchError, NotFoundError, RequestCancelled
from .extraction import chapter_matches, path_segments

CHAPTER_VALUE = re.compile(r"\d+(?:\.\d+)?")
TITLE_LIST_ENDPOINTS = ("/title_list/allV2", "/title_list/all")
CHAPTER_LISTS = ("firstChapterList", "midChapterList", "lastChapterList")


def parse_chapter_value(raw: Any) -> Optional[float]:
    """"#1095" -> 1095.0; "ex" -> None."""
    match = CHAPTER_VALUE.search(str(raw or "").strip())
    return float(match.group(0)) if match else None


def parse_chapter_range_end(raw: Any) -> Optional[float]:
    """Group summaries like "1-1095" -> 1095.0."""
    values = CHAPTER_VALUE.findall(str(raw or ""))
    return float(values[-1]) if values else None


def parse_epoch(raw: Any) -> Optional[datetime]:
    """Epoch seconds (or milliseconds) to UTC; non-positive or out-of-range values are unknown."""
    try:
        value = int(raw or 0)
    except (OverflowError, TypeError, ValueError):
        return None
    if value <= 0:
        return None
    if value > 1_000_000_000_000:
        value //= 1000
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_chapter_id(raw: Any) -> int:
    """Positive chapterId as int; anything else is 0."""
    try:
        value = int(raw or 0)
    except (OverflowError, TypeError, ValueError):
        return 0
    return value if value > 0 else 0


def _get(mapping: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping:
            return mapping[key]
    return None


def collect_titles(payload: Any) -> List[Dict[str, str]]:
    """Flatten allTitlesView / allTitlesViewV2 groups into {id, name, cover}."""
    success = payload.get("success") if isinstance(payload, dict) else None
    if not isinstance(success, dict):
        return []

    raw_titles: List[Dict[str, Any]] = []
    view = success.get("allTitlesView") or {}
    raw_titles.extend(view.get("titles") or [])

    view_v2 = success.get("allTitlesViewV2") or {}
    for group_key in ("AllTitlesGroup", "allTitlesGroup"):
        for group in view_v2.get(group_key) or []:
            raw_titles.extend((group or {}).get("titles") or [])

    titles = []
    for item in raw_titles:
        if not isinstance(item, dict):
            continue
        title_id = item.get("titleId") or 0
        name = (item.get("name") or "").strip()
        if not title_id or not name:
            continue
        titles.append({
            "id": str(title_id),
            "name": name,
            "cover": (item.get("portraitImageUrl") or "").strip(),
        })
    return titles


def iter_chapters(detail: Any) -> Iterator[Dict[str, Any]]:
    success = detail.get("success") if isinstance(detail, dict) else None
    view = (success or {}).get("titleDetailView") or {}
    for group in view.get("chapterListGroup") or []:
        for list_key in CHAPTER_LISTS:
            for chapter in group.get(list_key) or []:
                if isinstance(chapter, dict):
                    yield chapter


def latest_release(detail: Any) -> Tuple[Optional[float], Optional[datetime]]:
    """
    Highest chapter across group summaries and chapter lists. An equal
    chapter only fills in a missing release time.
    """
    latest: Optional[float] = None
    released_at: Optional[datetime] = None

    def consider(number: Optional[float], started: Optional[datetime]) -> None:
        nonlocal latest, released_at
        if number is None:
            return
        if latest is None or number > latest:
            latest, released_at = number, started
        elif number == latest and released_at is None and started is not None:
            released_at = started

    success = detail.get("success") if isinstance(detail, dict) else None
    view = (success or {}).get("titleDetailView") or {}
    for group in view.get("chapterListGroup") or []:
        consider(parse_chapter_range_end(group.get("chapterNumbers")), parse_epoch(group.get("startTime")))
        for list_key in CHAPTER_LISTS:
            for chapter in group.get(list_key) or []:
                if isinstance(chapter, dict):
                    consider(parse_chapter_value(chapter.get("name")), parse_epoch(chapter.get("startTime")))
    return latest, released_at


class MangaPlusConnector(BaseConnector, ChapterURLResolver):
    key = "mangaplus"
    name = "MangaPlus"
    base_url = "https://mangaplus.shueisha.co.jp"
    api_url = "https://jumpg-webapi.tokyo-cdn.com/api"
    allowed_hosts = ["mangaplus.shueisha.co.jp"]

    request_timeout = 10.0

    def _title_id(self, raw_url: str) -> str:
        parsed = self._parse_item_url(raw_url)
        segments = path_segments(parsed.path)
        if len(segments) < 2 or segments[0] != "titles":
            raise FormatMismatchError("mangaplus url must match /titles/{id}")
        title_id = segments[1].strip()
        if not title_id.isdigit():
            raise FormatMismatchError("invalid mangaplus title id")
        return title_id

    def _title_url(self, title_id: str) -> str:
        return f"{self.base_url}/titles/{title_id}"

    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        self._all_titles(ctx)

    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        title_id = self._title_id(raw_url)
        for title in self._all_titles(ctx):
            if title["id"] != title_id:
                continue
            result = MangaResult(
                source_key=self.key,
                source_item_id=title_id,
                title=title["name"],
                url=self._title_url(title_id),
                cover_image_url=title["cover"],
            )
            self._apply_latest(result, ctx)
            return result
        raise NotFoundError("mangaplus title not found")

    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        query = self._require_query(query).lower()
        limit = clamp_limit(limit)

        matches = [title for title in self._all_titles(ctx) if query in title["name"].lower()]
        matches.sort(key=lambda title: len(title["name"]))

        results = []
        for title in matches[:limit]:
            result = MangaResult(
                source_key=self.key,
                source_item_id=title["id"],
                title=title["name"],
                url=self._title_url(title["id"]),
                cover_image_url=title["cover"],
            )
            self._apply_latest(result, ctx)
            results.append(result)
        return results

    def resolve_chapter_url(self, raw_url: str, chapter: float,
                            ctx: Optional[RequestContext] = None) -> str:
        chapter = validate_chapter(chapter)
        title_id = self._title_id(raw_url)
        for item in iter_chapters(self._title_detail(title_id, ctx)):
            chapter_id = parse_chapter_id(item.get("chapterId"))
            if chapter_id and chapter_matches(parse_chapter_value(item.get("name")), chapter):
                return f"{self.base_url}/viewer/{chapter_id}"
        raise NotFoundError(f"chapter {chapter:g} not found")

    # =========================================================================
    # API
    # =========================================================================

    def _all_titles(self, ctx: Optional[RequestContext]) -> List[Dict[str, str]]:
        """First title list endpoint that yields titles; raises the last failure otherwise."""
        last_error: ConnectorError = DecodeError("unable to fetch mangaplus titles")
        for endpoint in TITLE_LIST_ENDPOINTS:
            try:
                payload = self.client.get_json(self.api_url + endpoint, ctx, params={"format": "json"})
            except RequestCancelled:
                raise
            except ConnectorError as exc:
                self._log(f"Title list {endpoint} failed: {exc}")
                last_error = exc
                continue
            titles = collect_titles(payload)
            if titles:
                return titles
            last_error = DecodeError(f"empty title list from {endpoint}")
        raise last_error

    def _title_detail(self, title_id: str, ctx: Optional[RequestContext]) -> Any:
        return self.client.get_json(
            self.api_url + "/title_detailV3", ctx, params={"title_id": title_id, "format": "json"}
        )

    def _apply_latest(self, result: MangaResult, ctx: Optional[RequestContext]) -> None:
        try:
            detail = self._title_detail(result.source_item_id, ctx)
        except RequestCancelled:
            raise
        except ConnectorError as exc:
            self._log(f"Title detail unavailable for {result.source_item_id}: {exc}")
            return
        result.latest_chapter, result.last_updated_at = latest_release(detail)
