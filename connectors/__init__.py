"""
================================================================================
Connector Registry
================================================================================
Central registry for every site connector.

  - Holds connectors by key behind a reader/writer lock (lookups are frequent,
    registration happens once at startup)
  - Resolves lookups by key, by host, or by a full item URL
  - Shares one pooled HTTP session between the default connectors
  - Runs health checks for all connectors concurrently

Usage:
    registry = build_default_registry()
    connector = registry.get("https://mangadex.org/title/...")
    result = connector.resolve_by_url(url)
================================================================================
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter

from .base import (
    KIND_NATIVE, KIND_YAML, BaseConnector, ChapterURLResolver, Descriptor, HealthStatus,
    MangaResult, set_log_callback, source_log, supports_chapter_urls,
)
from .context import RequestContext, ensure_context
from .declarative import Config, DeclarativeConnector
from .errors import (
    ConfigValidationError, ConnectorError, DecodeError, DuplicateConnectorError,
    FormatMismatchError, HostMismatchError, HttpStatusError, InvalidInputError,
    NotFoundError, RateLimitedError, RequestCancelled,
)
from .http_client import ClientSettings
from .asuracomic import AsuraComicConnector
from .flamecomics import FlameComicsConnector
from .mangadex import MangaDexConnector
from .mangafire import MangaFireConnector
from .mangaplus import MangaPlusConnector
from .mgeko import MgekoConnector
from .locks import ReadWriteLock
from .webtoons import WebtoonsConnector

# Site hosts that differ from the connector key
HOST_ALIASES = {
    "mangadex.org": "mangadex",
    "mangafire.to": "mangafire",
    "asuracomic.net": "asuracomic",
    "flamecomics.xyz": "flamecomics",
    "mgeko.cc": "mgeko",
    "webtoons.com": "webtoons",
    "m.webtoons.com": "webtoons",
}

NATIVE_CONNECTORS = (
    MangaDexConnector,
    MangaFireConnector,
    AsuraComicConnector,
    FlameComicsConnector,
    MgekoConnector,
    WebtoonsConnector,
    MangaPlusConnector,
)


def normalize_connector_key(raw: str) -> str:
    """Reduce a key, host or URL to a registry key ("https://www.mangafire.to/x" -> "mangafire")."""
    key = (raw or "").strip().lower()
    if not key:
        return ""

    parsed = urlparse(key)
    if parsed.scheme and parsed.hostname:
        key = parsed.hostname
    else:
        for prefix in ("https://", "http://"):
            if key.startswith(prefix):
                key = key[len(prefix):]
        for separator in "/?#:":
            key = key.split(separator, 1)[0]

    if key.startswith("www."):
        key = key[len("www."):]
    return HOST_ALIASES.get(key, key)


class Registry:
    """
    Keyed collection of connectors.

    Usage:
        registry = Registry()
        registry.register(MangaDexConnector())
        registry.get("mangadex.org")      # -> MangaDexConnector
        registry.list()                   # -> [Descriptor(...)]
        registry.health()                 # -> [HealthStatus(...)]
    """

    def __init__(self):
        self._connectors: Dict[str, BaseConnector] = {}
        self._lock = ReadWriteLock()

    def register(self, connector: BaseConnector) -> None:
        if connector is None:
            raise InvalidInputError("connector is required")
        key = connector.key or ""
        if not key.strip():
            raise InvalidInputError("connector key is required")

        with self._lock.write():
            if key in self._connectors:
                raise DuplicateConnectorError(key)
            self._connectors[key] = connector

    def get(self, key: str) -> Optional[BaseConnector]:
        """Look up by exact key, lowercased key, or host/URL alias."""
        trimmed = (key or "").strip()
        if not trimmed:
            return None

        with self._lock.read():
            for candidate in (trimmed, trimmed.lower(), normalize_connector_key(trimmed)):
                connector = self._connectors.get(candidate)
                if connector is not None:
                    return connector
        return None

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._connectors)

    def list(self) -> List[Descriptor]:
        with self._lock.read():
            items = [connector.descriptor() for connector in self._connectors.values()]
        return sorted(items, key=lambda item: item.key)

    def health(self, ctx: Optional[RequestContext] = None) -> List[HealthStatus]:
        """Check every connector concurrently; one status per connector, sorted by key."""
        with self._lock.read():
            connectors = list(self._connectors.values())
        if not connectors:
            return []

        ctx = ensure_context(ctx)
        with ThreadPoolExecutor(max_workers=len(connectors)) as pool:
            statuses = list(pool.map(lambda connector: self._check(connector, ctx), connectors))
        return sorted(statuses, key=lambda status: status.key)

    def _check(self, connector: BaseConnector, ctx: RequestContext) -> HealthStatus:
        error: Optional[str] = None
        try:
            connector.health_check(ctx)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            source_log(f"⚠️ [{connector.key}] health check failed: {error}")
        return HealthStatus(
            key=connector.key,
            name=connector.name,
            kind=connector.kind,
            healthy=error is None,
            error=error,
        )


# =============================================================================
# DEFAULT REGISTRY
# =============================================================================

def create_session() -> requests.Session:
    """Shared requests session with connection pooling; 429 retries stay in PacedClient."""
    session = requests.Session()
    session.headers.update({
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate",
    })
    adapter = HTTPAdapter(pool_connections=10, pool_maxsize=20, max_retries=0)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def build_default_registry(
    declarative_configs: Iterable[Union[Config, Mapping[str, Any]]] = (),
    session: Optional[requests.Session] = None,
    settings: Optional[ClientSettings] = None,
) -> Registry:
    """
    Register all native connectors, then each enabled declarative config.

    Raises:
        ConfigValidationError: a declarative config is invalid
        DuplicateConnectorError: two connectors share a key
    """
    session = session if session is not None else create_session()
    settings = settings or ClientSettings.from_env()
    registry = Registry()

    for connector_class in NATIVE_CONNECTORS:
        registry.register(connector_class(settings=settings, session=session))

    for raw in declarative_configs:
        config = raw if isinstance(raw, Config) else Config.from_dict(raw)
        config.normalize()
        if not config.enabled:
            source_log(f"⏭️ Skipping disabled connector '{config.key}'")
            continue
        registry.register(DeclarativeConnector(config, settings=settings, session=session))

    source_log(f"✅ Registered {len(registry)} connectors")
    return registry


# =============================================================================
# GLOBAL SINGLETON
# =============================================================================

_registry: Optional[Registry] = None


def get_registry() -> Registry:
    """Get or create the global Registry instance."""
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry


__all__ = [
    "KIND_NATIVE", "KIND_YAML", "HOST_ALIASES", "NATIVE_CONNECTORS",
    "BaseConnector", "ChapterURLResolver", "Descriptor", "HealthStatus", "MangaResult",
    "RequestContext", "ClientSettings", "Config", "DeclarativeConnector",
    "ConnectorError", "InvalidInputError", "HostMismatchError", "FormatMismatchError",
    "NotFoundError", "DecodeError", "HttpStatusError", "RateLimitedError",
    "RequestCancelled", "ConfigValidationError", "DuplicateConnectorError",
    "Registry", "build_default_registry", "create_session", "get_registry",
    "normalize_connector_key", "set_log_callback", "source_log", "supports_chapter_urls",
]
