"""
================================================================================
Declarative Connector
================================================================================
A connector for sites that expose a JSON API, driven entirely by a Config.

Config schema (camelCase or snake_case keys):

    key: example                  # required
    name: Example                 # required
    enabled: true                 # default true
    baseUrl: https://api.example.com
    allowedHosts: [example.com]   # default: host of baseUrl
    healthPath: /health
    search:   {path: /search, queryParam: q, limitParam: limit}
    resolve:  {path: /resolve, urlParam: url}
    response:
      searchItemsPath: items      # dot path to the result list
      resolveItemPath: item       # dot path to the single item
      idField: id
      titleField: title
      urlField: url
      latestChapterField: latestChapter
      lastUpdatedField: updatedAt # optional

Items missing id/title/url are skipped in search and rejected on resolve.
================================================================================
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from .base import KIND_YAML, BaseConnector, MangaResult
from .context import RequestContext
from .errors import ConfigValidationError, DecodeError
from .extraction import parse_iso_datetime


def _lookup(mapping: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in mapping:
        return mapping[camel]
    return mapping.get(snake, default)


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def ensure_path_prefix(raw: str) -> str:
    path = _text(raw)
    if not path:
        return ""
    return path if path.startswith("/") else "/" + path


@dataclass
class SearchConfig:
    path: str = ""
    query_param: str = "q"
    limit_param: str = "limit"


@dataclass
class ResolveConfig:
    path: str = ""
    url_param: str = "url"


@dataclass
class ResponseConfig:
    search_items_path: str = "items"
    resolve_item_path: str = "item"
    id_field: str = "id"
    title_field: str = "title"
    url_field: str = "url"
    latest_chapter_field: str = "latestChapter"
    last_updated_field: str = ""


@dataclass
class Config:
    key: str = ""
    name: str = ""
    enabled: bool = True
    base_url: str = ""
    allowed_hosts: List[str] = field(default_factory=list)
    health_path: str = "/health"
    search: SearchConfig = field(default_factory=SearchConfig)
    resolve: ResolveConfig = field(default_factory=ResolveConfig)
    response: ResponseConfig = field(default_factory=ResponseConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        """Build a normalized Config from a parsed YAML/JSON mapping."""
        if not isinstance(data, Mapping):
            raise ConfigValidationError("connector config must be a mapping")

        search = _lookup(data, "search", "search") or {}
        resolve = _lookup(data, "resolve", "resolve") or {}
        response = _lookup(data, "response", "response") or {}
        enabled = _lookup(data, "enabled", "enabled")
        hosts = _lookup(data, "allowedHosts", "allowed_hosts") or []
        if isinstance(hosts, str):
            hosts = [hosts]

        config = cls(
            key=_text(data.get("key")),
            name=_text(data.get("name")),
            enabled=True if enabled is None else bool(enabled),
            base_url=_text(_lookup(data, "baseUrl", "base_url")),
            allowed_hosts=[_text(host) for host in hosts],
            health_path=_text(_lookup(data, "healthPath", "health_path")),
            search=SearchConfig(
                path=_text(search.get("path")),
                query_param=_text(_lookup(search, "queryParam", "query_param")),
                limit_param=_text(_lookup(search, "limitParam", "limit_param")),
            ),
            resolve=ResolveConfig(
                path=_text(resolve.get("path")),
                url_param=_text(_lookup(resolve, "urlParam", "url_param")),
            ),
            response=ResponseConfig(
                search_items_path=_text(_lookup(response, "searchItemsPath", "search_items_path")),
                resolve_item_path=_text(_lookup(response, "resolveItemPath", "resolve_item_path")),
                id_field=_text(_lookup(response, "idField", "id_field")),
                title_field=_text(_lookup(response, "titleField", "title_field")),
                url_field=_text(_lookup(response, "urlField", "url_field")),
                latest_chapter_field=_text(_lookup(response, "latestChapterField", "latest_chapter_field")),
                last_updated_field=_text(_lookup(response, "lastUpdatedField", "last_updated_field")),
            ),
        )
        config.normalize()
        return config

    def normalize(self) -> "Config":
        """Trim values, fill defaults and normalize paths and hosts in place."""
        self.key = _text(self.key)
        self.name = _text(self.name)
        self.base_url = _text(self.base_url).rstrip("/")
        self.health_path = ensure_path_prefix(self.health_path) or "/health"

        self.search.path = ensure_path_prefix(self.search.path)
        self.search.query_param = _text(self.search.query_param) or "q"
        self.search.limit_param = _text(self.search.limit_param) or "limit"
        self.resolve.path = ensure_path_prefix(self.resolve.path)
        self.resolve.url_param = _text(self.resolve.url_param) or "url"

        response = self.response
        response.search_items_path = _text(response.search_items_path) or "items"
        response.resolve_item_path = _text(response.resolve_item_path) or "item"
        response.id_field = _text(response.id_field) or "id"
        response.title_field = _text(response.title_field) or "title"
        response.url_field = _text(response.url_field) or "url"
        response.latest_chapter_field = _text(response.latest_chapter_field) or "latestChapter"
        response.last_updated_field = _text(response.last_updated_field)

        hosts: List[str] = []
        for raw in self.allowed_hosts or ():
            host = _text(raw).lower()
            if host and host not in hosts:
                hosts.append(host)
        if not hosts and self.base_url:
            base_host = (urlparse(self.base_url).hostname or "").lower()
            if base_host:
                hosts.append(base_host)
        self.allowed_hosts = hosts
        return self

    def validate(self) -> None:
        if not self.key:
            raise ConfigValidationError("key is required")
        if not self.name:
            raise ConfigValidationError("name is required")
        if not self.base_url:
            raise ConfigValidationError("base_url is required")
        if not self.search.path:
            raise ConfigValidationError("search.path is required")
        if not self.resolve.path:
            raise ConfigValidationError("resolve.path is required")


# =============================================================================
# VALUE COERCION
# =============================================================================

def get_by_path(data: Any, dotted_path: str) -> Any:
    """Walk nested dicts by "a.b.c"; missing segments yield None."""
    dotted_path = (dotted_path or "").strip()
    if not dotted_path:
        return data
    current = data
    for segment in dotted_path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def to_string(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return None


def to_float(value: Any) -> Optional[float]:
    """Numbers and numeric strings; NaN, infinities and negatives are rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def from_epoch(value: int) -> Optional[datetime]:
    """Seconds, or milliseconds when above 1e12; non-positive is invalid."""
    if value <= 0:
        return None
    if value > 1_000_000_000_000:
        value //= 1000
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_time(value: Any) -> Optional[datetime]:
    """RFC3339, "YYYY-MM-DD HH:MM:SS", "YYYY-MM-DD", or Unix epoch."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        return from_epoch(int(value))
    if not isinstance(value, str) or not value.strip():
        return None

    trimmed = value.strip()
    for layout in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(trimmed, layout).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    if "T" in trimmed:
        return parse_iso_datetime(trimmed)
    return None


# =============================================================================
# CONNECTOR
# =============================================================================

class DeclarativeConnector(BaseConnector):
    """JSON API connector configured by a Config."""

    kind = KIND_YAML
    request_timeout = 10.0

    def __init__(self, config: Config, settings=None, session=None):
        if isinstance(config, Mapping):
            config = Config.from_dict(config)
        config.normalize()
        config.validate()
        if not config.enabled:
            raise ConfigValidationError(f"connector {config.key} is disabled")

        self.config = config
        self.key = config.key
        self.name = config.name
        self.base_url = config.base_url
        self.allowed_hosts = list(config.allowed_hosts)
        super().__init__(settings=settings, session=session)

    def health_check(self, ctx: Optional[RequestContext] = None) -> None:
        self.client.fetch(self.config.base_url + self.config.health_path, ctx)

    def resolve_by_url(self, raw_url: str, ctx: Optional[RequestContext] = None) -> MangaResult:
        trimmed = (raw_url or "").strip()
        self._parse_item_url(trimmed)

        payload = self.client.get_json(
            self.config.base_url + self.config.resolve.path, ctx,
            params={self.config.resolve.url_param: trimmed},
        )
        item = get_by_path(payload, self.config.response.resolve_item_path)
        if not isinstance(item, dict):
            raise DecodeError("resolve payload item is invalid")

        result = self.map_item(item)
        result.url = trimmed
        return result

    def search_by_title(self, query: str, limit: int = 10,
                        ctx: Optional[RequestContext] = None) -> List[MangaResult]:
        query = self._require_query(query)
        if not limit or limit <= 0:
            limit = 10

        payload = self.client.get_json(
            self.config.base_url + self.config.search.path, ctx,
            params={self.config.search.query_param: query, self.config.search.limit_param: str(limit)},
        )
        items = get_by_path(payload, self.config.response.search_items_path)
        if not isinstance(items, list):
            raise DecodeError("search payload items are invalid")

        results: List[MangaResult] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                results.append(self.map_item(item))
            except DecodeError as exc:
                self._log(f"Skipping search item: {exc}")
                continue
        return results[:limit]

    def map_item(self, item: Dict[str, Any]) -> MangaResult:
        """Map one response object through the configured field names."""
        fields = self.config.response
        required: Dict[str, str] = {}
        for label, name in (("id", fields.id_field), ("title", fields.title_field), ("url", fields.url_field)):
            value = to_string(item.get(name))
            if value is None or not value.strip():
                raise DecodeError(f"missing {label} field")
            required[label] = value.strip()

        result = MangaResult(
            source_key=self.key,
            source_item_id=required["id"],
            title=required["title"],
            url=required["url"],
        )
        if fields.latest_chapter_field in item:
            result.latest_chapter = to_float(item[fields.latest_chapter_field])
        if fields.last_updated_field and fields.last_updated_field in item:
            result.last_updated_at = to_time(item[fields.last_updated_field])
        return result
