import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import requests
from curl_cffi import requests as curl_requests

from .context import RequestContext, ensure_context
from .errors import ConnectorError, DecodeError, HttpStatusError, RateLimitedError

logger = logging.getLogger("tracker.connectors.http")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
ACCEPT_JSON = "application/json, text/plain, */*"
ACCEPT_XML = "application/xml,text/xml;q=0.9,*/*;q=0.8"


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class ClientSettings:
    """Tunables shared by every PacedClient."""
    timeout: float = 15.0
    min_interval: Optional[float] = None   # overrides each connector's own interval
    max_attempts: int = 3
    retry_after_cap: float = 4.0
    rate_limit_floor: float = 2.0          # minimum deferral after a 429
    retry_schedule: Tuple[float, ...] = (0.35, 0.8, 1.5)
    user_agent: str = DEFAULT_USER_AGENT
    impersonate: bool = True
    sitemap_ttl: float = 1800.0
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "ClientSettings":
        interval_ms = os.environ.get("CONNECTOR_MIN_INTERVAL_MS", "").strip()
        min_interval = None
        if interval_ms:
            try:
                min_interval = max(0.0, float(interval_ms) / 1000.0)
            except ValueError:
                min_interval = None
        return cls(
            timeout=_env_float("CONNECTOR_TIMEOUT", 15.0),
            min_interval=min_interval,
            max_attempts=max(1, _env_int("CONNECTOR_MAX_RETRIES", 3)),
            retry_after_cap=max(0.0, _env_float("CONNECTOR_RETRY_AFTER_CAP", 4.0)),
            user_agent=os.environ.get("CONNECTOR_USER_AGENT", "").strip() or DEFAULT_USER_AGENT,
            impersonate=_env_bool("CONNECTOR_IMPERSONATE", True),
            sitemap_ttl=max(0.0, _env_float("SITEMAP_CACHE_TTL", 1800.0)),
        )


def looks_like_cloudflare(response) -> bool:
    """403/503 challenge pages served by Cloudflare."""
    if response is None or response.status_code not in (403, 503):
        return False
    headers = response.headers or {}
    server = (headers.get("server") or headers.get("Server") or "").lower()
    if "cf-mitigated" in headers or "cf-ray" in headers or "CF-RAY" in headers:
        return True
    text = (response.text or "")[:4096].lower()
    if "cloudflare" in server and ("challenge" in text or "attention required" in text):
        return True
    return "just a moment" in text and "cloudflare" in text


class PacedClient:
    """
    Per-connector HTTP access.

    - Pacing: a lock-guarded "next allowed request" watermark. Every request
      waits (interruptibly) until the watermark, then pushes it forward by
      `min_interval` once the response is in.
    - Retry: 429 responses are retried up to `max_attempts` with a delay from
      Retry-After (capped) or the fixed schedule; each 429 also defers the
      watermark by at least `rate_limit_floor`. Other non-2xx are terminal.
    - Headers: realistic browser User-Agent, Accept, Accept-Language, Referer.
    """

    def __init__(self, name: str = "", settings: Optional[ClientSettings] = None,
                 min_interval: float = 0.0, timeout: Optional[float] = None,
                 referer: Optional[str] = None, impersonate: bool = False,
                 session: Optional[requests.Session] = None):
        self.name = name
        self.settings = settings or ClientSettings.from_env()
        if self.settings.min_interval is not None:
            min_interval = self.settings.min_interval
        self.min_interval = max(0.0, min_interval)
        self.timeout = timeout if timeout is not None else self.settings.timeout
        self.referer = referer
        self.impersonate = impersonate and self.settings.impersonate

        self._session = session
        self._curl_session = None
        self._session_lock = threading.Lock()

        self._request_lock = threading.Lock()
        self._next_allowed_request = 0.0

    # =========================================================================
    # SESSIONS
    # =========================================================================

    @property
    def session(self):
        if self._session is None:
            with self._session_lock:
                if self._session is None:
                    self._session = self._create_session()
        return self._session

    @session.setter
    def session(self, value) -> None:
        self._session = value

    def _create_session(self) -> requests.Session:
        """requests session with connection pooling; retries are handled here, not by urllib3."""
        session = requests.Session()
        adapter = requests.adapters.HTTPAdapter(pool_connections=10, pool_maxsize=20, max_retries=0)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _impersonation_session(self):
        if self._curl_session is None:
            with self._session_lock:
                if self._curl_session is None:
                    self._curl_session = curl_requests.Session(impersonate="chrome120")
        return self._curl_session

    # =========================================================================
    # PACING
    # =========================================================================

    @property
    def next_allowed_request(self) -> float:
        with self._request_lock:
            return self._next_allowed_request

    def wait_for_request_window(self, ctx: RequestContext) -> None:
        while True:
            with self._request_lock:
                next_allowed = self._next_allowed_request
            wait = next_allowed - time.monotonic()
            if wait <= 0:
                return
            ctx.wait(wait)

    def defer_requests(self, delay: float) -> None:
        """Push the watermark to now + delay unless it is already later."""
        if delay <= 0:
            delay = self.min_interval
        if delay <= 0:
            return
        candidate = time.monotonic() + delay
        with self._request_lock:
            if candidate > self._next_allowed_request:
                self._next_allowed_request = candidate

    def retry_delay(self, attempt: int, retry_after: Optional[str]) -> float:
        if retry_after:
            try:
                seconds = int(retry_after.strip())
            except ValueError:
                seconds = None
            if seconds is not None:
                return float(min(max(seconds, 0), self.settings.retry_after_cap))
        schedule = self.settings.retry_schedule
        return schedule[min(attempt, len(schedule) - 1)]

    # =========================================================================
    # REQUESTS
    # =========================================================================

    def headers(self, accept: str = ACCEPT_HTML, referer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": self.settings.user_agent,
            "Accept": accept,
            "Accept-Language": "en-US,en;q=0.9",
        }
        referer = referer or self.referer
        if referer:
            headers["Referer"] = referer
        headers.update(self.settings.extra_headers)
        return headers

    def _send(self, url: str, params: Optional[Dict[str, Any]], headers: Dict[str, str],
              timeout: float):
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=timeout)
        except requests.RequestException as exc:
            raise ConnectorError(f"request failed: {exc}") from exc

        if self.impersonate and looks_like_cloudflare(response):
            logger.info(f"🛡️ [{self.name}] Cloudflare challenge on {url}, retrying with impersonation")
            try:
                response = self._impersonation_session().get(
                    url, params=params, headers=headers, timeout=timeout
                )
            except Exception as exc:
                raise ConnectorError(f"impersonated request failed: {exc}") from exc
        return response

    def fetch(self, url: str, ctx: Optional[RequestContext] = None,
              params: Optional[Dict[str, Any]] = None, accept: str = ACCEPT_HTML,
              referer: Optional[str] = None):
        """GET `url` through the pacing window and 429 retry loop; return the 2xx response."""
        ctx = ensure_context(ctx)
        headers = self.headers(accept, referer)
        max_attempts = max(1, self.settings.max_attempts)

        for attempt in range(max_attempts):
            self.wait_for_request_window(ctx)
            ctx.check()

            try:
                response = self._send(url, params, headers, ctx.timeout(self.timeout))
            except ConnectorError:
                self.defer_requests(self.min_interval)
                raise

            status = response.status_code
            if 200 <= status < 300:
                self.defer_requests(self.min_interval)
                return response

            if status == 429:
                if attempt < max_attempts - 1:
                    delay = max(
                        self.retry_delay(attempt, response.headers.get("Retry-After")),
                        self.settings.rate_limit_floor,
                    )
                    logger.info(
                        f"⏳ [{self.name}] 429 on {url} (attempt {attempt + 1}/{max_attempts}), "
                        f"backing off {delay:.2f}s"
                    )
                    self.defer_requests(delay)
                    continue
                self.defer_requests(self.min_interval)
                raise RateLimitedError(url, attempts=max_attempts)

            self.defer_requests(self.min_interval)
            raise HttpStatusError(status, url)

        raise RateLimitedError(url, attempts=max_attempts)

    def get_text(self, url: str, ctx: Optional[RequestContext] = None,
                 params: Optional[Dict[str, Any]] = None, accept: str = ACCEPT_HTML,
                 referer: Optional[str] = None) -> str:
        return self.fetch(url, ctx, params=params, accept=accept, referer=referer).text

    def get_json(self, url: str, ctx: Optional[RequestContext] = None,
                 params: Optional[Dict[str, Any]] = None,
                 referer: Optional[str] = None) -> Any:
        response = self.fetch(url, ctx, params=params, accept=ACCEPT_JSON, referer=referer)
        try:
            return response.json()
        except ValueError as exc:
            raise DecodeError(f"invalid json from {url}: {exc}") from exc
