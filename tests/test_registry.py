import threading

import pytest

from conftest import FakeSession
from connectors import (
    KIND_NATIVE,
    KIND_YAML,
    BaseConnector,
    Registry,
    build_default_registry,
    normalize_connector_key,
    supports_chapter_urls,
)
from connectors.errors import ConfigValidationError, DuplicateConnectorError, InvalidInputError


class StubConnector(BaseConnector):
    def __init__(self, key, name=None, kind=KIND_NATIVE, health_error=None, settings=None):
        self.key = key
        self.name = name or key.title()
        self.kind = kind
        self.health_error = health_error
        self.health_calls = 0
        super().__init__(settings=settings, session=FakeSession())

    def health_check(self, ctx=None):
        self.health_calls += 1
        if self.health_error:
            raise self.health_error

    def resolve_by_url(self, raw_url, ctx=None):
        raise NotImplementedError

    def search_by_title(self, query, limit=10, ctx=None):
        return []


def test_register_list_and_health(fast_settings):
    registry = Registry()
    registry.register(StubConnector("b", "B", settings=fast_settings))
    registry.register(StubConnector("a", "A", kind=KIND_YAML, health_error=RuntimeError("down"), settings=fast_settings))

    assert [item.key for item in registry.list()] == ["a", "b"]

    statuses = registry.health()
    assert [status.key for status in statuses] == ["a", "b"]
    assert not statuses[0].healthy
    assert statuses[0].error == "down"
    assert statuses[0].kind == KIND_YAML
    assert statuses[1].healthy
    assert statuses[1].error is None


def test_health_runs_checks_concurrently(fast_settings):
    barrier = threading.Barrier(3, timeout=5)

    class BarrierConnector(StubConnector):
        def health_check(self, ctx=None):
            barrier.wait()

    registry = Registry()
    for key in ("x", "y", "z"):
        registry.register(BarrierConnector(key, settings=fast_settings))

    assert all(status.healthy for status in registry.health())


def test_health_on_empty_registry():
    assert Registry().health() == []


def test_duplicate_key_is_rejected(fast_settings):
    registry = Registry()
    registry.register(StubConnector("mangafire", settings=fast_settings))
    with pytest.raises(DuplicateConnectorError):
        registry.register(StubConnector("mangafire", settings=fast_settings))


def test_empty_key_is_rejected(fast_settings):
    with pytest.raises(InvalidInputError):
        Registry().register(StubConnector("  ", settings=fast_settings))


@pytest.mark.parametrize("raw,expected", [
    ("mangafire", "mangafire"),
    (" MangaFire ", "mangafire"),
    ("mangafire.to", "mangafire"),
    ("https://mangafire.to/manga/bukiyou-na-senpaii.2nw2", "mangafire"),
    ("www.mangafire.to", "mangafire"),
    ("asuracomic.net/series/nano-machine", "asuracomic"),
    ("https://flamecomics.xyz/series/83", "flamecomics"),
    ("www.mgeko.cc:443", "mgeko"),
    ("https://m.webtoons.com/en/romance/x/list?title_no=4208", "webtoons"),
    ("https://mangadex.org/title/abc", "mangadex"),
    ("unknown.example", "unknown.example"),
    ("", ""),
])
def test_normalize_connector_key(raw, expected):
    assert normalize_connector_key(raw) == expected


def test_get_resolves_keys_hosts_and_urls(fast_settings):
    registry = Registry()
    for key in ("mangafire", "asuracomic", "flamecomics", "webtoons"):
        registry.register(StubConnector(key, settings=fast_settings))

    for raw in ("mangafire", " MangaFire ", "mangafire.to", "www.mangafire.to",
                "https://mangafire.to/manga/bukiyou-na-senpaii.2nw2"):
        assert registry.get(raw).key == "mangafire"
    for raw in ("WebToons", "webtoons.com",
                "https://www.webtoons.com/en/romance/maybe-meant-to-be/list?title_no=4208",
                "https://m.webtoons.com/en/romance/maybe-meant-to-be/list?title_no=4208"):
        assert registry.get(raw).key == "webtoons"

    assert registry.get("") is None
    assert registry.get("mangadex") is None
    assert "flamecomics.xyz" in registry


def test_build_default_registry_registers_natives_and_declarative(fast_settings):
    session = FakeSession()
    declarative = [
        {"key": "example", "name": "Example", "baseUrl": "https://api.example.com",
         "search": {"path": "/search"}, "resolve": {"path": "/resolve"}},
        {"key": "disabled", "name": "Disabled", "enabled": False, "baseUrl": "https://api.example.com",
         "search": {"path": "/search"}, "resolve": {"path": "/resolve"}},
    ]
    registry = build_default_registry(declarative, session=session, settings=fast_settings)

    keys = [item.key for item in registry.list()]
    assert keys == ["asuracomic", "example", "flamecomics", "mangadex", "mangafire", "mangaplus", "mgeko", "webtoons"]
    assert registry.get("example").kind == KIND_YAML
    assert registry.get("mangadex").kind == KIND_NATIVE
    assert registry.get("mangadex").session is session
    assert all(supports_chapter_urls(registry.get(key)) for key in keys if key != "example")


def test_build_default_registry_rejects_duplicate_declarative_key(fast_settings):
    declarative = [{"key": "mangadex", "name": "Shadow", "baseUrl": "https://api.example.com",
                    "search": {"path": "/search"}, "resolve": {"path": "/resolve"}}]
    with pytest.raises(DuplicateConnectorError):
        build_default_registry(declarative, session=FakeSession(), settings=fast_settings)


def test_build_default_registry_rejects_invalid_declarative_config(fast_settings):
    with pytest.raises(ConfigValidationError):
        build_default_registry([{"key": "broken", "name": "Broken"}], session=FakeSession(), settings=fast_settings)
