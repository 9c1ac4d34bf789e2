"""
Sitemap-backed catalog index.

Used as the last-resort search source when a site's own search/listing page
returns too few matches (or is rate limited). Building the index means
fetching /sitemap.xml, every referenced sub-sitemap, and extracting item
identifiers, so the result is cached behind a read/write lock for a TTL.
"""

import logging
import re
import time
from typing import Callable, Iterable, List, Optional, Set
from urllib.parse import urlparse

from .context import RequestContext, ensure_context
from .errors import ConnectorError, DecodeError
from .http_client import ACCEPT_XML, PacedClient
from .locks import ReadWriteLock
from .searchutil import contains_all_tokens, contains_any_token, normalize, significant_tokens, tokenize_normalized

logger = logging.getLogger("tracker.connectors.sitemap")

SITEMAP_LOC = re.compile(r"<loc>([^<]+)</loc>", re.IGNORECASE | re.DOTALL)


class SitemapIndex:
    """TTL-cached, sorted list of item identifiers taken from a sitemap tree."""

    def __init__(
        self,
        client: PacedClient,
        index_url: str,
        extract_id: Callable[[str], Optional[str]],
        list_marker: str = "/sitemap-list-",
        ttl: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.index_url = index_url
        self.extract_id = extract_id
        self.list_marker = list_marker
        self.ttl = ttl
        self.clock = clock

        self._lock = ReadWriteLock()
        self._ids: List[str] = []
        self._built_at: Optional[float] = None

    def _fresh(self) -> bool:
        return bool(self._ids) and self._built_at is not None and self.clock() - self._built_at < self.ttl

    def invalidate(self) -> None:
        with self._lock.write():
            self._ids = []
            self._built_at = None

    def ids(self, ctx: Optional[RequestContext] = None) -> List[str]:
        """Cached identifiers, rebuilding the index when missing or expired."""
        with self._lock.read():
            if self._fresh():
                return list(self._ids)

        ids = self._build(ensure_context(ctx))

        with self._lock.write():
            self._ids = list(ids)
            self._built_at = self.clock()
        return ids

    def _build(self, ctx: RequestContext) -> List[str]:
        index_body = self.client.get_text(self.index_url, ctx, accept=ACCEPT_XML)

        sub_sitemaps = [
            loc.strip() for loc in SITEMAP_LOC.findall(index_body)
            if self.list_marker in loc
        ]
        if not sub_sitemaps:
            raise DecodeError(f"no sitemap list links found in {self.index_url}")

        unique: Set[str] = set()
        for link in sub_sitemaps:
            ctx.check()
            try:
                body = self.client.get_text(link, ctx, accept=ACCEPT_XML)
            except ConnectorError as exc:
                if ctx.cancelled:
                    raise
                logger.debug(f"Skipping sub-sitemap {link}: {exc}")
                continue

            for loc in SITEMAP_LOC.findall(body):
                item_id = self.extract_id(urlparse(loc.strip()).path)
                if item_id:
                    unique.add(item_id)

        ids = sorted(unique)
        logger.info(f"🗺️ Rebuilt sitemap index {self.index_url}: {len(ids)} entries from {len(sub_sitemaps)} lists")
        return ids


def _id_base(item_id: str) -> str:
    """Identifier without its ".xxxx" disambiguation suffix."""
    dot = item_id.find(".")
    if dot > 0:
        return item_id[:dot]
    return item_id


def fallback_candidate_limit(remaining: int) -> int:
    """How many sitemap candidates to verify for `remaining` open slots."""
    return max(12, min(120, remaining * 6))


def match_sitemap_ids(
    all_ids: Iterable[str],
    query: str,
    limit: int,
    exclude: Iterable[str] = (),
) -> List[str]:
    """
    Select up to `limit` identifiers for `query`.

    A first pass keeps identifiers containing every token; if that leaves
    room, a second pass accepts identifiers containing any token. Stop words
    are dropped when something remains after dropping them.
    """
    if limit <= 0:
        return []
    all_ids = list(all_ids)
    tokens = tokenize_normalized(normalize(query))
    significant = significant_tokens(tokens)
    if significant:
        tokens = significant
    if not tokens:
        return []

    excluded = set(exclude)
    selected: List[str] = []

    def try_append(item_id: str) -> None:
        if item_id in excluded:
            return
        excluded.add(item_id)
        selected.append(item_id)

    for item_id in all_ids:
        if contains_all_tokens(normalize(_id_base(item_id)), tokens):
            try_append(item_id)
            if len(selected) >= limit:
                return selected

    for item_id in all_ids:
        if contains_any_token(normalize(_id_base(item_id)), tokens):
            try_append(item_id)
            if len(selected) >= limit:
                break

    return selected
