"""
================================================================================
WEBTOON Connector
================================================================================
webtoons.com connector.

Search goes through the site's JSON autocomplete endpoint
(/en/search/immediate); everything else is scraped from the episode list
(/episodeList?titleNo=N), which redirects to the canonical list page and shows
ten episodes per page, newest first.
================================================================================
"""

import math
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import parse_qs

from .base import BaseConnector, ChapterURLResolver, MangaResult, clamp_limit, validate_chapter
from .context import RequestContext, ensure_context
from .errors import ConnectorError, DecodeError, InvalidInputError, NotFoundError, RequestCancelled
from .extraction import absolute_url, collapse_text, make_soup, meta_content, parse_absolute_date, parse_iso_datetime
from .searchutil import any_candidate_matches, normalize, tokenize_normalized

IMAGE_BASE_URL = "https://swebtoon-phinf.pstatic.net"
SEARCH_LOCALE = "en"
EPISODES_PER_PAGE = 10
ENRICH_TIMEOUT = 6.0


@dataclass
class EpisodeEntry:
    number: int
    url: str
    date_raw: str = ""


def title_no_from_query(query: str) -> int:
    """title_no (or titleNo) from a webtoons.com query string."""
    values = parse_qs(query or "")
    raw = (values.get("title_no") or values.get("titleNo") or [""])[0].strip()
    if not raw:
        raise InvalidInputError("webtoons url must include title_no or titleNo")
    try:
        title_no = int(raw)
    except ValueError:
        raise InvalidInputError("invalid webtoons title number") from None
    if title_no <= 0:
        raise InvalidInputError("invalid webtoons title number")
    return title_no


def episode_number(chapter: float) -> int:
    chapter = validate_chapter(chapter)
    rounded = round(chapter)
    if math.fabs(chapter - rounded) > 1e-9:
        raise InvalidInputError("webtoons chapter must be a whole episode number")
    return int(rounded)


def parse_webtoons_date(raw: str):
    value = collapse_text(raw)
    if not value:
        return None
    return parse_absolute_date(value) or parse_iso_datetime(value)


class WebtoonsConnector(BaseConnector, ChapterURLResolver):
    key = "webtoons"
    name = "WEBTOON"
    base_url = "https://www.webtoons.com"
    allowed_hosts = ["webtoons.com"]

    request_timeout = 12.0

    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        self._search_immediate("webtoon", ctx)

    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        parsed = self._parse_item_url(raw_url)
        return self._resolve_title(title_no_from_query(parsed.query), ctx)

    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        query = self._require_query(query)
        limit = clamp_limit(limit)
        normalized_query = normalize(query)
        tokens = tokenize_normalized(normalized_query)
        ctx = ensure_context(ctx)

        payload = self._search_immediate(query, ctx)
        found = payload.get("result") or {}
        if not isinstance(found, dict):
            raise DecodeError("webtoons search result is invalid")
        searched = found.get("searchedList") or []
        if not isinstance(searched, list):
            raise DecodeError("webtoons search result is invalid")

        results: List[MangaResult] = []
        seen = set()
        for item in searched:
            if not isinstance(item, dict):
                continue
            if str(item.get("searchMode") or "").strip().upper() != "TITLE":
                continue
            title = str(item.get("title") or "").strip()
            if not any_candidate_matches([title], normalized_query, tokens):
                continue
            try:
                title_no = int(item.get("titleNo") or 0)
            except (TypeError, ValueError):
                continue
            if title_no <= 0 or title_no in seen:
                continue

            result = MangaResult(
                source_key=self.key,
                source_item_id=str(title_no),
                title=title,
                url=self._episode_list_url(title_no),
                cover_image_url=absolute_url(IMAGE_BASE_URL, item.get("thumbnailMobile") or ""),
            )
            self._enrich(result, title_no, ctx)

            results.append(result)
            seen.add(title_no)
            if len(results) >= limit:
                break
        return results

    def resolve_chapter_url(self, raw_url: str, chapter: float,
                            ctx: Optional[RequestContext] = None) -> str:
        episode_no = episode_number(chapter)
        parsed = self._parse_item_url(raw_url)
        title_no = title_no_from_query(parsed.query)

        first_page = self._episode_entries(title_no, 1, ctx)
        if not first_page:
            raise NotFoundError("webtoons episode list is empty")

        entry = find_episode(first_page, episode_no)
        if entry and entry.url:
            return entry.url

        latest = latest_episode_number(first_page)
        if episode_no > latest:
            raise NotFoundError(f"episode {episode_no} not found")

        page = max(1, (latest - episode_no) // EPISODES_PER_PAGE + 1)
        if page > 1:
            entry = find_episode(self._episode_entries(title_no, page, ctx), episode_no)
            if entry and entry.url:
                return entry.url
        raise NotFoundError(f"episode {episode_no} not found")

    # =========================================================================
    # REQUESTS
    # =========================================================================

    def _search_immediate(self, query: str, ctx: Optional[RequestContext]) -> dict:
        payload = self.client.get_json(
            f"{self.base_url}/{SEARCH_LOCALE}/search/immediate", ctx,
            params={"keyword": query.strip()},
        )
        if not isinstance(payload, dict) or not payload.get("success"):
            raise DecodeError("webtoons search was not successful")
        return payload

    def _episode_list_url(self, title_no: int) -> str:
        return f"{self.base_url}/episodeList?titleNo={title_no}"

    def _fetch_episode_list(self, title_no: int, page: int, ctx: Optional[RequestContext]):
        params = {"titleNo": title_no}
        if page > 1:
            params["page"] = page
        return self.client.fetch(self.base_url + "/episodeList", ctx, params=params)

    def _episode_entries(self, title_no: int, page: int, ctx: Optional[RequestContext]) -> List[EpisodeEntry]:
        return parse_episode_entries(self._fetch_episode_list(title_no, page, ctx).text, self.base_url)

    def _enrich(self, result: MangaResult, title_no: int, ctx: RequestContext) -> None:
        """Copy title/url/cover/latest episode from the episode list, bounded by its own timeout."""
        try:
            resolved = self._resolve_title(title_no, ctx.bounded(ENRICH_TIMEOUT))
        except RequestCancelled:
            if ctx.cancelled:
                raise
            self._log(f"Enrichment of {title_no} timed out")
            return
        except ConnectorError as exc:
            self._log(f"Enrichment of {title_no} failed: {exc}")
            return

        result.title = resolved.title or result.title
        result.url = resolved.url or result.url
        result.cover_image_url = resolved.cover_image_url or result.cover_image_url
        result.latest_chapter = resolved.latest_chapter
        result.last_updated_at = resolved.last_updated_at

    def _resolve_title(self, title_no: int, ctx: Optional[RequestContext]) -> MangaResult:
        response = self._fetch_episode_list(title_no, 1, ctx)
        body = response.text
        soup = make_soup(body)

        canonical = ""
        link = soup.find("link", rel="canonical", href=True)
        if link is not None:
            canonical = link["href"].strip()
        canonical = canonical or (getattr(response, "url", "") or "").strip() or self._episode_list_url(title_no)

        title = meta_content(soup, "og:title")
        if not title:
            heading = soup.select_one("h1.subj")
            title = collapse_text(heading.get_text(" ", strip=True)) if heading is not None else ""
        title = title or f"WEBTOON {title_no}"

        entries = parse_episode_entries(body, self.base_url)
        latest = latest_episode_number(entries)
        latest_chapter, released_at = None, None
        if latest > 0:
            latest_chapter = float(latest)
            entry = find_episode(entries, latest)
            if entry:
                released_at = parse_webtoons_date(entry.date_raw)

        return MangaResult(
            source_key=self.key,
            source_item_id=str(title_no),
            title=title,
            url=canonical,
            cover_image_url=self._absolute_url(meta_content(soup, "og:image")),
            latest_chapter=latest_chapter,
            last_updated_at=released_at,
        )


def parse_episode_entries(body: str, base_url: str) -> List[EpisodeEntry]:
    soup = make_soup(body)
    entries: List[EpisodeEntry] = []
    for item in soup.select("li._episodeItem[data-episode-no]"):
        try:
            number = int(item["data-episode-no"].strip())
        except ValueError:
            continue
        if number <= 0:
            continue

        href = ""
        for anchor in item.find_all("a", href=True):
            if "episode_no=" in anchor["href"]:
                href = anchor["href"].strip()
                break
        date = item.select_one("span.date")

        entries.append(EpisodeEntry(
            number=number,
            url=absolute_url(base_url, href),
            date_raw=date.get_text(strip=True) if date is not None else "",
        ))
    return entries


def find_episode(entries: List[EpisodeEntry], number: int) -> Optional[EpisodeEntry]:
    for entry in entries:
        if entry.number == number:
            return entry
    return None


def latest_episode_number(entries: List[EpisodeEntry]) -> int:
    return max((entry.number for entry in entries), default=0)
