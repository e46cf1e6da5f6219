"""
Tests for the system API: the private cache REST namespace, the web flush
trigger, growl notices and HTTP cache headers.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from src.cache_control.execution import CacheServices
from src.cache_control.object_cache import ObjectCache
from src.cache_control.storage import DatabaseManager, TransientStore
from src.system_api.app import create_app
from src.system_api.auth import SiteUser, SSOVerifier
from src.system_api.middleware import get_flush_url, remove_query_args

from conftest import SITE_TOKEN, SITE_UID, option_rows, seed_options

SSO_TOKEN = "a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d"
CACHE_PATH = f"/wp-json/{SITE_UID}/v1/cache"
NOCACHE = "no-cache, must-revalidate, max-age=0"


@pytest.fixture
def admin():
    return SiteUser(id=1, login="admin", capabilities=frozenset({"install_plugins"}), session_token="session")


@pytest.fixture
def current_user():
    """Mutable holder for the user the host attaches to requests."""
    return {"user": None}


@pytest.fixture
def sso():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"successful": request.url.path.endswith(SSO_TOKEN)})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def app(settings, services, site_config, database_url, current_user, sso):
    asyncio.run(seed_options(database_url, option_rows(transients=12, others=3)))

    app = create_app(
        settings=settings,
        services=services,
        sso=SSOVerifier(site_config, client=sso),
        user_loader=lambda request: current_user["user"]
    )

    @app.get("/page")
    async def page(request: Request):
        return {"growl": request.state.growl_messages}

    return app


class TestRestFlush:

    def test_flush_selected_types(self, app, edge_requests, opcode_reset):
        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, params={"types": "object,transient", "mwp-token": SITE_TOKEN})

        assert response.status_code == 200
        assert response.json() == {"object": True, "transient": 12}
        assert edge_requests == []
        opcode_reset.assert_not_called()

    def test_flush_defaults_to_object(self, app, edge_requests, opcode_reset):
        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, headers={"Authorization": f"Token {SITE_TOKEN}"})

        assert response.status_code == 200
        assert response.json() == {"object": True}
        assert edge_requests == []
        opcode_reset.assert_not_called()

    def test_empty_types_default_to_object(self, app):
        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, params={"types": "", "mwp-token": SITE_TOKEN})

        assert response.json() == {"object": True}

    def test_every_tier_runs_again_when_the_execution_closes(self, app, edge_requests, opcode_reset):
        types = "http,object,opcode,transient"

        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, params={"types": types, "mwp-token": SITE_TOKEN})

        assert response.json() == {"http": True, "object": True, "opcode": True, "transient": 12}
        assert [r.method for r in edge_requests] == ["PURGE", "PURGE"]
        assert opcode_reset.call_count == 2

    @pytest.mark.asyncio
    async def test_response_does_not_wait_for_cache_node(self, settings, site_config, content, database_url, sso):
        settings.cache.edge_timeout = 5.0
        release = asyncio.Event()
        node_requests = []

        async def slow_node(request: httpx.Request) -> httpx.Response:
            node_requests.append(request)
            await release.wait()
            return httpx.Response(200)

        services = CacheServices(
            settings=settings,
            site_config=site_config,
            content=content,
            db=DatabaseManager(database_url),
            object_cache=ObjectCache(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow_node))
        )
        app = create_app(settings=settings, services=services, sso=SSOVerifier(site_config, client=sso))

        messages = []
        node_pending_at_send = []
        response_complete = asyncio.Event()
        received = []

        async def receive():
            if not received:
                received.append(True)
                return {"type": "http.request", "body": b"", "more_body": False}
            await response_complete.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            messages.append(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                node_pending_at_send.append(not release.is_set())
                response_complete.set()
                release.set()

        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "FLUSH",
            "scheme": "http",
            "path": CACHE_PATH,
            "raw_path": CACHE_PATH.encode(),
            "root_path": "",
            "query_string": f"types=http&mwp-token={SITE_TOKEN}".encode(),
            "headers": [(b"host", b"testserver")],
            "client": ("127.0.0.1", 50000),
            "server": ("testserver", 80),
        }

        await asyncio.wait_for(app(scope, receive, send), timeout=5)
        await services.http_client.aclose()

        body = b"".join(m.get("body", b"") for m in messages if m["type"] == "http.response.body")
        assert json.loads(body) == {"http": True}
        assert node_pending_at_send == [True]
        # The initial dispatch and the repeat at close
        assert len(node_requests) == 2

    def test_unknown_types_flush_nothing(self, app):
        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, params={"types": "bogus", "mwp-token": SITE_TOKEN})

        assert response.status_code == 200
        assert response.json() == {}

    def test_rest_headers(self, app):
        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, params={"types": "object", "mwp-token": SITE_TOKEN})

        assert response.headers["X-MWP2-System-Plugin"] == "1.0.0"
        assert response.headers["X-MWP2-Version-ID"] == "0"
        assert response.headers["Cache-Control"] == NOCACHE
        assert response.headers["Expires"] == "Wed, 11 Jan 1984 05:00:00 GMT"

    def test_failed_tier_reported_in_header(self, app, services):
        services.transients = AsyncMock(spec=TransientStore)
        services.transients.delete_all.side_effect = OperationalError("DELETE", {}, Exception("gone"))

        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, params={"types": "object,transient", "mwp-token": SITE_TOKEN})

        assert response.json() == {"object": True}
        assert response.headers["X-Cache-Flush-Errors"] == "transient: The transient cache could not be flushed."

    def test_sso_token(self, app):
        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, params={"types": "object"}, headers={"Authorization": f"Bearer {SSO_TOKEN}"})

        assert response.status_code == 200
        assert response.json() == {"object": True}


class TestRestPurge:

    def test_purge_defaults_to_home_url(self, app, edge_requests):
        with TestClient(app) as client:
            response = client.request("PURGE", CACHE_PATH, params={"mwp-token": SITE_TOKEN})

        assert response.json() == ["https://example.com/"]
        assert len(edge_requests) == 1
        assert edge_requests[0].url.path == "/_cache/delete_regex"

    def test_purge_normalizes_and_deduplicates(self, app, edge_requests):
        urls = "https://Example.com/a,https://example.com/a/,ftp://example.com/b,https://example.com:443/c#top"

        with TestClient(app) as client:
            response = client.request("PURGE", CACHE_PATH, params={"urls": urls, "mwp-token": SITE_TOKEN})

        assert response.json() == ["https://example.com/a/", "https://example.com/c/"]
        assert len(edge_requests) == 1

    def test_nothing_valid_to_purge(self, app, edge_requests):
        with TestClient(app) as client:
            response = client.request("PURGE", CACHE_PATH, params={"urls": "not a url", "mwp-token": SITE_TOKEN})

        assert response.json() == []
        assert edge_requests == []


class TestRestAuthorization:

    @pytest.mark.parametrize("params, headers", [
        ({}, {}),
        ({"mwp-token": "f" * 32}, {}),
        ({"mwp-token": "short"}, {}),
        ({}, {"Authorization": "Token " + "f" * 36}),
    ])
    def test_rejected_like_unknown_route(self, app, edge_requests, params, headers):
        with TestClient(app) as client:
            rejected = client.request("FLUSH", CACHE_PATH, params=params, headers=headers)
            unknown = client.request("FLUSH", "/wp-json/unknown/route")

        assert rejected.status_code == unknown.status_code == 404
        assert rejected.json()["error"]["message"] == unknown.json()["error"]["message"]
        assert edge_requests == []

    def test_wrong_site_namespace(self, app):
        other_uid = "00000000-0000-4000-8000-000000000000"

        with TestClient(app) as client:
            response = client.request("FLUSH", f"/wp-json/{other_uid}/v1/cache", params={"mwp-token": SITE_TOKEN})

        assert response.status_code == 404


class TestErrorEnvelope:

    def test_http_error(self, app):
        with TestClient(app) as client:
            response = client.request("FLUSH", CACHE_PATH, headers={"X-Request-ID": "req-404"})

        assert response.status_code == 404
        assert response.json() == {"error": {"type": "http_error", "message": "Not Found", "request_id": "req-404"}}

    def test_unhandled_error(self, app):
        @app.get("/broken")
        async def broken():
            raise RuntimeError("boom")

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/broken", headers={"X-Request-ID": "req-500"})

        assert response.status_code == 500
        assert response.json() == {
            "error": {
                "type": "internal_error",
                "message": "An internal server error occurred",
                "request_id": "req-500",
            }
        }


class TestWebFlushTrigger:

    def test_admin_with_nonce_flushes_and_redirects(self, app, admin, current_user, edge_requests, opcode_reset):
        current_user["user"] = admin
        nonce = app.state.nonce_manager.create("cache_flush", admin)

        with TestClient(app) as client:
            response = client.get(
                f"/page?keep=1&mwp-action=cache_flush&_wpnonce={nonce}",
                follow_redirects=False
            )

        assert response.status_code == 302
        assert response.headers["location"] == "/page?keep=1"
        assert "Cache flushed" in response.headers["set-cookie"]
        assert [r.method for r in edge_requests] == ["PURGE", "PURGE"]
        assert opcode_reset.call_count == 2

    def test_bad_nonce_passes_through(self, app, admin, current_user, edge_requests):
        current_user["user"] = admin

        with TestClient(app) as client:
            response = client.get("/page?mwp-action=cache_flush&_wpnonce=0123456789", follow_redirects=False)

        assert response.status_code == 200
        assert edge_requests == []

    def test_user_without_capability_passes_through(self, app, current_user, edge_requests):
        editor = SiteUser(id=2, login="editor", capabilities=frozenset({"edit_posts"}))
        current_user["user"] = editor
        nonce = app.state.nonce_manager.create("cache_flush", editor)

        with TestClient(app) as client:
            response = client.get(f"/page?mwp-action=cache_flush&_wpnonce={nonce}", follow_redirects=False)

        assert response.status_code == 200
        assert edge_requests == []

    def test_anonymous_passes_through(self, app, edge_requests):
        with TestClient(app) as client:
            response = client.get("/page?mwp-action=cache_flush&_wpnonce=x", follow_redirects=False)

        assert response.status_code == 200
        assert edge_requests == []


class TestGrowl:

    def test_queued_notice_is_shown_once(self, app):
        with TestClient(app) as client:
            response = client.get("/page", headers={"Cookie": 'mwp_system_growl=["Cache flushed"]'})

        assert response.json() == {"growl": ["Cache flushed"]}
        assert "Max-Age=0" in response.headers["set-cookie"]

    def test_malformed_cookie_is_discarded(self, app):
        with TestClient(app) as client:
            response = client.get("/page", headers={"Cookie": "mwp_system_growl=garbage"})

        assert response.json() == {"growl": []}

    def test_no_cookie_no_header(self, app):
        with TestClient(app) as client:
            response = client.get("/page")

        assert "set-cookie" not in response.headers


class TestCacheHeaders:

    def test_cacheable_page(self, app):
        with TestClient(app) as client:
            response = client.get("/page")

        assert response.headers["Cache-Control"] == "max-age=604800"
        assert response.headers["Expires"].endswith("GMT")

    def test_nocache_query_arg(self, app):
        with TestClient(app) as client:
            response = client.get("/page?nocache")

        assert response.headers["Cache-Control"] == NOCACHE
        assert response.headers["Expires"] == "Wed, 11 Jan 1984 05:00:00 GMT"

    def test_disabled(self, settings, services, site_config, sso):
        settings.cache.headers_enabled = False
        app = create_app(settings=settings, services=services, sso=SSOVerifier(site_config, client=sso))

        @app.get("/page")
        async def page():
            return {}

        with TestClient(app) as client:
            response = client.get("/page")

        assert "Expires" not in response.headers

    def test_health_is_not_cached(self, app):
        with TestClient(app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert "Expires" not in response.headers
        assert "Cache-Control" not in response.headers

    @pytest.mark.parametrize("method, path, params", [
        ("FLUSH", CACHE_PATH, {"mwp-token": "bad"}),
        ("GET", "/missing", {}),
        ("POST", "/page", {}),
    ])
    def test_errors_are_not_cached(self, app, method, path, params):
        with TestClient(app) as client:
            response = client.request(method, path, params=params)

        assert response.status_code >= 400
        assert "Expires" not in response.headers
        assert "Cache-Control" not in response.headers

    def test_redirect_is_not_cached(self, app, admin, current_user):
        current_user["user"] = admin
        nonce = app.state.nonce_manager.create("cache_flush", admin)

        with TestClient(app) as client:
            response = client.get(f"/page?mwp-action=cache_flush&_wpnonce={nonce}", follow_redirects=False)

        assert response.status_code == 302
        assert "Cache-Control" not in response.headers


def test_health(app):
    with TestClient(app) as client:
        response = client.get("/health", headers={"X-Request-ID": "req-1"})

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "healthy"
    assert body["components"]["database"]["status"] == "healthy"
    assert body["components"]["site_config"]["status"] == "healthy"
    assert response.headers["X-Request-ID"] == "req-1"


class TestUrlHelpers:

    def test_flush_url_round_trip(self, admin):
        from starlette.datastructures import URL
        from src.system_api.auth import NonceManager

        nonces = NonceManager("secret")
        url = get_flush_url("/wp-admin/index.php?page=1", admin, nonces)

        assert url.startswith("/wp-admin/index.php?page=1&mwp-action=cache_flush&_wpnonce=")
        assert remove_query_args(URL(url), ("mwp-action", "_wpnonce")) == "/wp-admin/index.php?page=1"
