"""
================================================================================
Connector Contract
================================================================================
Abstract base class and value types shared by every connector.

Every connector answers the same three questions:
  1. health_check()                -> is the site reachable?
  2. resolve_by_url(url)           -> MangaResult for a canonical item page
  3. search_by_title(query, limit) -> candidate MangaResults

Connectors whose site exposes per-chapter pages additionally implement
resolve_chapter_url(url, chapter).

RATE LIMITING:
  - Each connector owns a PacedClient (pacing watermark + bounded 429 retry)
  - The registry may inject a shared requests.Session via `connector.session`
================================================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import requests

from .context import RequestContext
from .errors import HostMismatchError, InvalidInputError
from .extraction import absolute_url, host_allowed
from .http_client import ClientSettings, PacedClient

KIND_NATIVE = "native"
KIND_YAML = "yaml"

logger = logging.getLogger("tracker.connectors")


# =============================================================================
# LOGGING CALLBACK (avoids circular imports)
# =============================================================================

# Set by the app factory on startup
_log_callback: Optional[Callable[[str], None]] = None


def set_log_callback(callback: Optional[Callable[[str], None]]) -> None:
    """Route connector log lines through the application's logger."""
    global _log_callback
    _log_callback = callback


def source_log(msg: str) -> None:
    """Log a message using the registered callback or the module logger."""
    if _log_callback:
        _log_callback(msg)
    else:
        logger.info(msg)


# =============================================================================
# DATA CLASSES
# =============================================================================

def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class MangaResult:
    """
    Normalized item returned by every connector.

    latest_chapter and last_updated_at stay None when unknown; 0 and the
    epoch are real values and are never used as placeholders.
    """
    source_key: str
    source_item_id: str
    title: str
    url: str
    related_titles: List[str] = field(default_factory=list)
    cover_image_url: str = ""
    latest_chapter: Optional[float] = None
    last_updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary (camelCase keys)."""
        data: Dict[str, Any] = {
            "sourceKey": self.source_key,
            "sourceItemId": self.source_item_id,
            "title": self.title,
            "url": self.url,
        }
        if self.related_titles:
            data["relatedTitles"] = list(self.related_titles)
        if self.cover_image_url:
            data["coverImageUrl"] = self.cover_image_url
        if self.latest_chapter is not None:
            data["latestChapter"] = self.latest_chapter
        if self.last_updated_at is not None:
            data["lastUpdatedAt"] = format_timestamp(self.last_updated_at)
        return data


@dataclass(frozen=True)
class Descriptor:
    key: str
    name: str
    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "name": self.name, "kind": self.kind}


@dataclass(frozen=True)
class HealthStatus:
    key: str
    name: str
    kind: str
    healthy: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "key": self.key,
            "name": self.name,
            "kind": self.kind,
            "healthy": self.healthy,
        }
        if self.error:
            data["error"] = self.error
        return data


# =============================================================================
# BASE CONNECTOR CLASS
# =============================================================================

class BaseConnector(ABC):
    """
    Abstract base class for connectors.

    Subclasses set the class attributes below and implement health_check,
    resolve_by_url and search_by_title.

    Example:
        class MangaDexConnector(BaseConnector):
            key = "mangadex"
            name = "MangaDex"
            base_url = "https://mangadex.org"
            allowed_hosts = ["mangadex.org"]

            def resolve_by_url(self, raw_url, ctx=None):
                ...
    """

    # =========================================================================
    # CONNECTOR CONFIGURATION (Override in subclass)
    # =========================================================================

    key: str = "base"
    name: str = "Base Connector"
    kind: str = KIND_NATIVE
    base_url: str = ""
    allowed_hosts: List[str] = []

    # Pacing: minimum spacing between requests (seconds); 0 disables pacing
    min_request_interval: float = 0.0
    request_timeout: float = 15.0
    requires_impersonation: bool = False

    # Sent as Referer on HTML requests when set
    referer_path: Optional[str] = None

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def __init__(self, settings: Optional[ClientSettings] = None,
                 session: Optional[requests.Session] = None):
        self.settings = settings or ClientSettings.from_env()
        referer = self.base_url.rstrip("/") + self.referer_path if self.referer_path else None
        self.client = PacedClient(
            name=self.key,
            settings=self.settings,
            min_interval=self.min_request_interval,
            timeout=self.request_timeout,
            referer=referer,
            impersonate=self.requires_impersonation,
            session=session,
        )

    @property
    def session(self):
        return self.client.session

    @session.setter
    def session(self, value) -> None:
        self.client.session = value

    def descriptor(self) -> Descriptor:
        return Descriptor(key=self.key, name=self.name, kind=self.kind)

    # =========================================================================
    # ABSTRACT METHODS (Must implement in subclass)
    # =========================================================================

    @abstractmethod
    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        """Raise a ConnectorError when the site is unreachable."""

    @abstractmethod
    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        """
        Resolve a canonical item URL into a MangaResult.

        Raises:
            InvalidInputError, HostMismatchError, FormatMismatchError before any
            request; NotFoundError, HttpStatusError, DecodeError afterwards.
        """

    @abstractmethod
    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        """Search the site for items whose title (or alias) matches `query`."""

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    def _parse_item_url(self, raw_url: str):
        """Validate emptiness, scheme/host and allow-list; return the parsed URL."""
        trimmed = (raw_url or "").strip()
        if not trimmed:
            raise InvalidInputError("url is required")
        parsed = urlparse(trimmed)
        if not parsed.scheme or not parsed.hostname:
            raise InvalidInputError(f"invalid url: {trimmed}")
        if not host_allowed(parsed.hostname, self.allowed_hosts):
            raise HostMismatchError(self.key, parsed.hostname)
        return parsed

    def _require_query(self, query: str) -> str:
        trimmed = (query or "").strip()
        if not trimmed:
            raise InvalidInputError("title is required")
        return trimmed

    def _absolute_url(self, url: str) -> str:
        """Convert relative URL to absolute."""
        return absolute_url(self.base_url, url)

    def _log(self, msg: str) -> None:
        source_log(f"[{self.key}] {msg}")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} key='{self.key}' kind={self.kind}>"


class ChapterURLResolver(ABC):
    """Capability mixin for sites that expose per-chapter reader pages."""

    @abstractmethod
    def resolve_chapter_url(self, raw_url: str, chapter: float,
                            ctx: Optional[RequestContext] = None) -> str:
        """Direct reader URL for `chapter` of the item at `raw_url`."""


def supports_chapter_urls(connector: Any) -> bool:
    return isinstance(connector, ChapterURLResolver)


def clamp_limit(limit: Optional[int], default: int = 10, maximum: int = 50) -> int:
    if not limit or limit <= 0:
        return default
    return min(limit, maximum)


def validate_chapter(chapter: Any) -> float:
    """Positive finite chapter number or InvalidInputError."""
    try:
        value = float(chapter)
    except (TypeError, ValueError):
        raise InvalidInputError("invalid chapter") from None
    if value != value or value in (float("inf"), float("-inf")) or value <= 0:
        raise InvalidInputError("invalid chapter")
    return value
