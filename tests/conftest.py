import json
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import pytest
from requests.structures import CaseInsensitiveDict

from connectors.http_client import ClientSettings


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", headers: Optional[Dict[str, str]] = None,
                 url: str = ""):
        self.status_code = status_code
        self.text = text
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url

    def json(self) -> Any:
        return json.loads(self.text)


def html(body: str, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code, body)


def json_response(payload: Any, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code, json.dumps(payload), {"Content-Type": "application/json"})


class FakeSession:
    """
    Stand-in for requests.Session serving canned responses.

    Routes are looked up by full URL (query string included) first, then by
    the bare URL. A route may be a FakeResponse, a str (HTML body), a dict or
    list (JSON body), or a callable(url, params) returning any of those.
    Unknown URLs answer 404.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, params=None, headers=None, timeout=None, **kwargs):
        full_url = url
        if params:
            full_url = f"{url}?{urlencode(params, doseq=True)}"
        self.calls.append({"url": url, "full_url": full_url, "params": params, "headers": headers or {}})

        route = self.routes.get(full_url, self.routes.get(url))
        if route is None:
            return FakeResponse(404, "not found", url=full_url)
        if callable(route):
            route = route(url, params)
        return self._coerce(route, full_url)

    @staticmethod
    def _coerce(route: Any, full_url: str) -> FakeResponse:
        if isinstance(route, FakeResponse):
            if not route.url:
                route.url = full_url
            return route
        if isinstance(route, str):
            return FakeResponse(200, route, url=full_url)
        response = json_response(route)
        response.url = full_url
        return response

    def urls(self) -> List[str]:
        return [call["full_url"] for call in self.calls]

    def count(self, predicate: Callable[[str], bool]) -> int:
        return sum(1 for call in self.calls if predicate(call["full_url"]))


@pytest.fixture
def fast_settings() -> ClientSettings:
    """No pacing, no backoff waits, no impersonation."""
    return ClientSettings(
        timeout=5.0,
        min_interval=0.0,
        max_attempts=3,
        retry_after_cap=0.0,
        rate_limit_floor=0.0,
        retry_schedule=(0.0,),
        impersonate=False,
    )
