from __future__ import annotations

from tilestream.runtime.urls import UrlResolver, join_url, with_query_param


def test_relative_content_gets_tileset_query() -> None:
    urls = UrlResolver("https://tiles.test/v1/root.json?key=abc")
    assert urls.resolve("content/a.glb") == "https://tiles.test/v1/content/a.glb?key=abc"


def test_root_relative_path_resolves_against_origin() -> None:
    urls = UrlResolver("https://tiles.test/v1/root.json")
    assert urls.resolve("/files/a.glb") == "https://tiles.test/files/a.glb"


def test_query_from_content_url_propagates() -> None:
    urls = UrlResolver("https://tiles.test/v1/root.json?key=abc")
    nested = urls.resolve("/v1/nested.json?session=xyz")
    assert nested == "https://tiles.test/v1/nested.json?session=xyz&key=abc"
    assert urls.resolve("b.glb") == "https://tiles.test/v1/b.glb?key=abc&session=xyz"


def test_content_query_wins_over_shared_value() -> None:
    urls = UrlResolver("https://tiles.test/root.json?key=abc")
    assert urls.resolve("a.glb?key=other") == "https://tiles.test/a.glb?key=other"


def test_api_key_is_appended_under_key_name() -> None:
    urls = UrlResolver("https://tiles.test/x/tileset.json?v=2", api_key="K", query_key_name="code")
    assert urls.tileset_url == "https://tiles.test/x/tileset.json?v=2&code=K"
    assert urls.resolve("a.glb") == "https://tiles.test/x/a.glb?v=2&code=K"


def test_base_url_of_nested_document() -> None:
    urls = UrlResolver("https://tiles.test/v1/root.json")
    assert urls.resolve("c.glb", "https://tiles.test/v1/sub/nested.json") == "https://tiles.test/v1/sub/c.glb"


def test_absolute_content_url_is_kept() -> None:
    urls = UrlResolver("https://tiles.test/root.json")
    assert urls.resolve("https://cdn.test/x.glb") == "https://cdn.test/x.glb"


def test_local_paths() -> None:
    urls = UrlResolver("/data/set/tileset.json")
    assert urls.resolve("tiles/a.b3dm") == "/data/set/tiles/a.b3dm"
    assert urls.resolve("/tiles/a.b3dm") == "/data/set/tiles/a.b3dm"
    assert join_url("file:///data/set/tileset.json", "/b.glb") == "file:///data/set/b.glb"


def test_with_query_param_replaces_value() -> None:
    assert with_query_param("https://t.test/a.json?key=1", "key", "2") == "https://t.test/a.json?key=2"
