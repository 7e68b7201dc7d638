"""Integration tests for serving bucket objects through the proxy middleware."""

import base64
import hashlib
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from httpx import ASGITransport, AsyncClient

from s3proxy.errors import StorageError
from s3proxy.server import create_app
from s3proxy.storage.backend import StoredObject
from conftest import BUCKET, make_config

KEY_HEADER = "x-4front-s3-proxy-key"


class TestDirectObject:
    """Requests that resolve to the key named by the path."""

    async def test_serves_object(self, client, storage):
        storage.put(BUCKET, "css/site.css", b"body{}", content_type="text/css")
        resp = await client.get("/css/site.css")
        assert resp.status_code == 200
        assert resp.content == b"body{}"
        assert resp.headers["content-type"] == "text/css"
        assert resp.headers["content-length"] == "6"
        assert resp.headers["etag"] == f'"{hashlib.md5(b"body{}").hexdigest()}"'
        assert resp.headers[KEY_HEADER] == "css/site.css"

    async def test_last_modified_forwarded(self, client, storage):
        storage.put(
            BUCKET,
            "a.txt",
            b"a",
            last_modified=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        )
        resp = await client.get("/a.txt")
        assert resp.headers["last-modified"] == "Tue, 02 Jan 2024 03:04:05 GMT"

    async def test_missing_object_falls_through(self, client, storage):
        resp = await client.get("/missing.txt")
        assert resp.status_code == 404
        assert KEY_HEADER not in resp.headers

    async def test_query_string_ignored(self, client, storage):
        storage.put(BUCKET, "app.js", b"x")
        resp = await client.get("/app.js?v=123")
        assert resp.status_code == 200
        assert resp.headers[KEY_HEADER] == "app.js"

    async def test_cache_bust_segments_ignored(self, client, storage):
        storage.put(BUCKET, "js/app.js", b"x")
        resp = await client.get("/--v1234/js/app.js")
        assert resp.status_code == 200
        assert resp.headers[KEY_HEADER] == "js/app.js"

    async def test_percent_encoded_path(self, client, storage):
        storage.put(BUCKET, "docs/my file.txt", b"x")
        resp = await client.get("/docs/my%20file.txt")
        assert resp.status_code == 200
        assert resp.headers[KEY_HEADER] == "docs/my%20file.txt"

    async def test_non_latin1_key(self, client, storage):
        storage.put(BUCKET, "docs/日本.txt", b"hi")
        resp = await client.get("/docs/%E6%97%A5%E6%9C%AC.txt")
        assert resp.status_code == 200
        assert resp.content == b"hi"
        assert resp.headers[KEY_HEADER] == "docs/%E6%97%A5%E6%9C%AC.txt"

    async def test_undecodable_path_is_server_error(self, storage):
        app = create_app(make_config())
        app.state.storage = storage
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as c:
            resp = await c.get("/%ff.txt")
        assert resp.status_code == 500

    async def test_large_object_streamed(self, client, storage):
        data = bytes(range(256)) * 1024
        storage.put(BUCKET, "blob.bin", data)
        resp = await client.get("/blob.bin")
        assert resp.status_code == 200
        assert resp.content == data


class TestPrefix:
    async def test_keys_live_under_prefix(self, make_client, storage):
        storage.put(BUCKET, "public/a.txt", b"a")
        storage.put(BUCKET, "a.txt", b"outside")
        client = await make_client(prefix="/public/")
        resp = await client.get("/a.txt")
        assert resp.content == b"a"
        assert resp.headers[KEY_HEADER] == "public/a.txt"

    async def test_prefix_root_serves_index(self, make_client, storage):
        storage.put(BUCKET, "public/index.html", b"<h1>home</h1>", content_type="text/html")
        client = await make_client(prefix="public", index=["index.html"])
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.headers[KEY_HEADER] == "public/index.html"


class TestIndexDocuments:
    async def test_directory_serves_index(self, make_client, storage):
        storage.put(BUCKET, "docs/index.html", b"docs", content_type="text/html")
        client = await make_client(index=["index.html"])
        for path in ("/docs", "/docs/"):
            resp = await client.get(path)
            assert resp.status_code == 200
            assert resp.content == b"docs"
            assert resp.headers[KEY_HEADER] == "docs/index.html"

    async def test_bucket_root_serves_index(self, make_client, storage):
        storage.put(BUCKET, "index.html", b"root")
        client = await make_client(index=["index.html"])
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.headers[KEY_HEADER] == "index.html"

    async def test_index_documents_tried_in_order(self, make_client, storage):
        storage.put(BUCKET, "docs/index.htm", b"htm")
        storage.put(BUCKET, "docs/default.html", b"default")
        client = await make_client(index=["index.html", "index.htm", "default.html"])
        resp = await client.get("/docs/")
        assert resp.content == b"htm"

    async def test_direct_object_wins_over_index(self, make_client, storage):
        storage.put(BUCKET, "docs", b"direct")
        storage.put(BUCKET, "docs/index.html", b"index")
        client = await make_client(index=["index.html"])
        resp = await client.get("/docs")
        assert resp.content == b"direct"

    async def test_index_content_type_from_request_path(self, make_client, storage):
        storage.put(BUCKET, "docs/index.html", b"<p>")
        client = await make_client(index=["index.html"])
        resp = await client.get("/docs/")
        # No extension on the request path, so octet-stream is kept
        assert resp.headers["content-type"] == "application/octet-stream"


class TestListing:
    async def test_lists_directory(self, make_client, storage):
        storage.put(BUCKET, "assets/a.js", b"")
        storage.put(BUCKET, "assets/img/logo.png", b"")
        client = await make_client(listing=True)
        resp = await client.get("/assets")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/json"
        assert resp.json() == ["a.js", "img/logo.png"]
        assert KEY_HEADER not in resp.headers

    async def test_lists_bucket_root(self, make_client, storage):
        storage.put(BUCKET, "a.txt", b"")
        storage.put(BUCKET, "dir/b.txt", b"")
        client = await make_client(listing=True)
        resp = await client.get("/")
        assert resp.json() == ["a.txt", "dir/b.txt"]

    async def test_lists_prefix_root(self, make_client, storage):
        storage.put(BUCKET, "public/a.txt", b"")
        storage.put(BUCKET, "private/b.txt", b"")
        client = await make_client(prefix="public", listing=True)
        resp = await client.get("/")
        assert resp.json() == ["a.txt"]

    async def test_index_wins_over_listing(self, make_client, storage):
        storage.put(BUCKET, "docs/index.html", b"index")
        storage.put(BUCKET, "docs/other.html", b"other")
        client = await make_client(index=["index.html"], listing=True)
        resp = await client.get("/docs/")
        assert resp.content == b"index"

    async def test_placeholder_only_listing_falls_through(self, make_client, storage):
        storage.put(BUCKET, "empty/", b"")
        client = await make_client(listing=True)
        resp = await client.get("/empty")
        assert resp.status_code == 404

    async def test_listing_disabled(self, client, storage):
        storage.put(BUCKET, "assets/a.js", b"")
        resp = await client.get("/assets")
        assert resp.status_code == 404


class TestConditionalRequests:
    async def test_matching_etag_returns_304(self, client, storage):
        etag = storage.put(BUCKET, "a.txt", b"data")
        resp = await client.get("/a.txt", headers={"If-None-Match": etag})
        assert resp.status_code == 304
        assert resp.content == b""
        assert KEY_HEADER not in resp.headers

    async def test_stale_etag_returns_object(self, client, storage):
        storage.put(BUCKET, "a.txt", b"data")
        resp = await client.get("/a.txt", headers={"If-None-Match": '"stale"'})
        assert resp.status_code == 200
        assert resp.content == b"data"

    async def test_304_on_index_document(self, make_client, storage):
        etag = storage.put(BUCKET, "docs/index.html", b"index")
        client = await make_client(index=["index.html"], listing=True)
        resp = await client.get("/docs/", headers={"If-None-Match": etag})
        assert resp.status_code == 304


class TestBase64:
    async def test_body_and_headers_transcoded(self, client, storage):
        data = b"\x00\x01binary\xff" * 100
        etag = storage.put(BUCKET, "img.png", data, content_type="image/png")
        resp = await client.get("/img.png", headers={"Accept-Encoding": "base64"})
        assert resp.status_code == 200
        assert resp.content == base64.b64encode(data)
        assert resp.headers["content-encoding"] == "base64"
        assert resp.headers["etag"] == etag[:-1] + '_base64"'
        assert "content-length" not in resp.headers
        assert resp.headers["content-type"] == "image/png"

    async def test_if_none_match_not_forwarded(self, client, storage):
        etag = storage.put(BUCKET, "a.txt", b"data")
        resp = await client.get(
            "/a.txt", headers={"Accept-Encoding": "base64", "If-None-Match": etag}
        )
        assert resp.status_code == 200
        assert resp.content == base64.b64encode(b"data")

    async def test_other_codings_served_raw(self, client, storage):
        storage.put(BUCKET, "a.txt", b"data")
        resp = await client.get("/a.txt", headers={"Accept-Encoding": "gzip, deflate"})
        assert resp.content == b"data"
        assert "content-encoding" not in resp.headers
        assert resp.headers["content-length"] == "4"


class TestHeaderTranslation:
    async def test_content_type_inferred_from_extension(self, client, storage):
        storage.put(BUCKET, "data.json", b"{}")
        resp = await client.get("/data.json")
        assert resp.headers["content-type"] == "application/json"

    async def test_cache_control_override(self, make_client, storage):
        storage.put(BUCKET, "a.txt", b"a", cache_control="max-age=60")
        client = await make_client(override_cache_control="no-store")
        resp = await client.get("/a.txt")
        assert resp.headers["cache-control"] == "no-store"

    async def test_cache_control_default(self, make_client, storage):
        storage.put(BUCKET, "a.txt", b"a")
        storage.put(BUCKET, "b.txt", b"b", cache_control="max-age=60")
        client = await make_client(default_cache_control="max-age=300")
        assert (await client.get("/a.txt")).headers["cache-control"] == "max-age=300"
        assert (await client.get("/b.txt")).headers["cache-control"] == "max-age=60"

    async def test_custom_header_prefix(self, make_client, storage):
        storage.put(BUCKET, "a.txt", b"a")
        config = make_config()
        config.server.custom_header_prefix = "x-acme-"
        client = await make_client(config=config)
        resp = await client.get("/a.txt")
        assert resp.headers["x-acme-s3-proxy-key"] == "a.txt"
        assert KEY_HEADER not in resp.headers


class TestStorageErrors:
    async def test_object_error_stops_resolution(self, make_client, storage):
        storage.put(BUCKET, "docs/index.html", b"index")
        storage.get_object = AsyncMock(side_effect=StorageError("boom"))
        client = await make_client(index=["index.html"])
        resp = await client.get("/docs")
        assert resp.status_code == 500
        assert resp.content == b""
        assert storage.get_object.await_count == 1

    async def test_listing_error_returns_500(self, make_client, storage):
        storage.list_keys = AsyncMock(side_effect=StorageError("boom"))
        client = await make_client(listing=True)
        resp = await client.get("/assets")
        assert resp.status_code == 500


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


class TestObjectRelease:
    """The storage body is released whether or not it was streamed."""

    async def test_released_after_response(self, client, storage):
        release = AsyncMock()
        storage.get_object = AsyncMock(
            return_value=StoredObject(
                key="a.txt", headers={}, body=_chunks(b"a", b"b"), release=release
            )
        )
        resp = await client.get("/a.txt")
        assert resp.content == b"ab"
        release.assert_awaited_once()

    async def test_released_when_response_cannot_be_built(self, storage):
        release = AsyncMock()
        storage.get_object = AsyncMock(
            return_value=StoredObject(
                key="a.txt", headers={}, body=_chunks(b"a"), release=release
            )
        )
        app = create_app(make_config())
        app.state.storage = storage
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        with patch(
            "s3proxy.handlers.proxy.translate_headers", side_effect=RuntimeError("boom")
        ):
            async with AsyncClient(transport=transport, base_url="http://testserver") as c:
                resp = await c.get("/a.txt")
        assert resp.status_code == 500
        release.assert_awaited_once()


class TestOutcomeLogging:
    async def test_each_candidate_logged_with_outcome(self, make_client, storage, caplog):
        storage.put(BUCKET, "docs/index.html", b"index")
        client = await make_client(index=["index.html"])
        with caplog.at_level(logging.DEBUG, logger="s3proxy.handlers.proxy"):
            await client.get("/docs")
        outcomes = [
            (r.key, r.outcome) for r in caplog.records if hasattr(r, "outcome")
        ]
        assert outcomes == [("docs", "miss"), ("docs/index.html", "found")]


class TestDeferral:
    async def test_non_get_deferred(self, client, storage):
        storage.put(BUCKET, "a.txt", b"a")
        storage.get_object = AsyncMock(wraps=storage.get_object)
        for method in ("POST", "PUT", "DELETE", "HEAD"):
            resp = await client.request(method, "/a.txt")
            assert KEY_HEADER not in resp.headers
        storage.get_object.assert_not_awaited()

    async def test_health_not_looked_up(self, client, storage):
        storage.put(BUCKET, "health", b"from bucket")
        resp = await client.get("/health")
        assert resp.json() == {"status": "ok"}


class TestMountPath:
    async def test_serves_under_mount(self, make_client, storage):
        storage.put(BUCKET, "a.txt", b"a")
        client = await make_client(mount_path="/static/")
        resp = await client.get("/static/a.txt")
        assert resp.status_code == 200
        assert resp.headers[KEY_HEADER] == "a.txt"

    async def test_mount_root_serves_index(self, make_client, storage):
        storage.put(BUCKET, "index.html", b"root")
        client = await make_client(mount_path="/static", index=["index.html"])
        resp = await client.get("/static")
        assert resp.status_code == 200
        assert resp.headers[KEY_HEADER] == "index.html"

    async def test_outside_mount_deferred(self, make_client, storage):
        storage.put(BUCKET, "a.txt", b"a")
        storage.put(BUCKET, "staticfoo/a.txt", b"a")
        client = await make_client(mount_path="/static")
        assert (await client.get("/a.txt")).status_code == 404
        assert (await client.get("/staticfoo/a.txt")).status_code == 404
