"""Tests for the aiohttp routes and session middleware."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient as Client, TestServer as Server

from scopeauth.auth.manager import AuthenticationManager
from scopeauth.auth.metadata import AnonymousMetaData, RouteProviderMetaData, create_oauth2_metadata
from scopeauth.auth.registry import ProviderRegistry
from scopeauth.auth.scope import RouteProvider
from scopeauth.core.config import AuthSettings
from scopeauth.web import AuthRoutes, wants_html
from scopeauth.web.handlers import NEXT_COOKIE_NAME

ISSUER = "https://idp.example.com"
TOKEN_URL = f"{ISSUER}/token"
AUTHORIZE_URL = f"{ISSUER}/authorize"
BASE_URL = "http://localhost:8080"
CALLBACK_URL = f"{BASE_URL}/auth/callback"

PUBLIC_SITE = RouteProviderMetaData(name="site", path_prefix="/public")


def idp_transport(access_token: str) -> httpx.MockTransport:
    """An IdP that accepts any code except ``bad``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/.well-known/openid-configuration"):
            return httpx.Response(
                200,
                json={"issuer": ISSUER, "authorization_endpoint": AUTHORIZE_URL, "token_endpoint": TOKEN_URL},
            )
        if str(request.url) == TOKEN_URL:
            form = parse_qs(request.content.decode())
            if form.get("code") == ["bad"]:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code already used"})
            return httpx.Response(200, json={"access_token": access_token, "token_type": "Bearer"})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def build_app(manager: AuthenticationManager) -> web.Application:
    routes = AuthRoutes(manager, routes=[PUBLIC_SITE])
    app = web.Application(middlewares=[routes.session_middleware])
    routes.register_routes(app)

    async def whoami(request: web.Request) -> web.Response:
        session = request["session"]
        return web.json_response({"user": session.user.id, "uuid": session.uuid})

    async def health(request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "has_session": "session" in request})

    app.router.add_get("/api/me", whoami)
    app.router.add_get("/public/me", whoami)
    app.router.add_get("/health", health)
    return app


@pytest.fixture
def access_token(jwt_factory):
    return jwt_factory({"sub": "alice", "name": "Alice", "email": "alice@example.com", "iss": ISSUER})


@pytest.fixture
def settings():
    return AuthSettings(base_url=BASE_URL, public_paths=["/health"])


@pytest.fixture
def manager(access_token, settings):
    registry = ProviderRegistry().with_instance_default(
        create_oauth2_metadata("client-1", "s3cret", issuer_url=ISSUER)
    )
    registry.register(RouteProvider(PUBLIC_SITE), AnonymousMetaData())
    return AuthenticationManager(registry, settings=settings, transport=idp_transport(access_token))


@pytest.fixture
def app(manager):
    return build_app(manager)


async def _exchange(client: Client, code: str = "good"):
    return await client.post(
        "/auth/manage-session",
        json={"code": code, "codeVerifier": "verifier", "redirectUri": f"{BASE_URL}/spa"},
    )


class TestMiddleware:
    """Tests for the session middleware."""

    @pytest.mark.asyncio
    async def test_public_path_bypasses_auth(self, app):
        """Test configured public paths get no session and no error."""
        async with Client(Server(app)) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            assert await resp.json() == {"status": "ok", "has_session": False}

    @pytest.mark.asyncio
    async def test_anonymous_scope_sets_cookie(self, app):
        """Test an anonymous route gets a fresh session and its cookie."""
        async with Client(Server(app)) as client:
            resp = await client.get("/public/me")
            assert resp.status == 200
            body = await resp.json()
            assert body["user"] == "anonymous"
            assert resp.cookies["sessionUUID"].value == body["uuid"]

    @pytest.mark.asyncio
    async def test_anonymous_cookie_reused(self, app):
        """Test an existing cookie is reused without being set again."""
        async with Client(Server(app)) as client:
            resp = await client.get("/public/me", headers={"Cookie": "sessionUUID=abc"})
            assert (await resp.json())["uuid"] == "abc"
            assert "sessionUUID" not in resp.cookies

    @pytest.mark.asyncio
    async def test_api_request_without_session(self, app):
        """Test a non-browser request without a session gets 401 JSON."""
        async with Client(Server(app)) as client:
            resp = await client.get("/api/me", headers={"Accept": "application/json"})
            assert resp.status == 401
            assert await resp.json() == {"error": "Authentication required"}

    @pytest.mark.asyncio
    async def test_browser_request_redirected_to_login(self, app):
        """Test a browser request without a session is sent to the provider."""
        async with Client(Server(app)) as client:
            resp = await client.get("/api/me", headers={"Accept": "text/html"}, allow_redirects=False)
            assert resp.status == 302
            location = resp.headers["Location"]
            assert location.startswith(AUTHORIZE_URL + "?")
            assert parse_qs(urlparse(location).query)["redirect_uri"] == [CALLBACK_URL]
            assert NEXT_COOKIE_NAME in resp.cookies

    @pytest.mark.asyncio
    async def test_unknown_session_cookie(self, app):
        """Test a stale cookie is rejected."""
        async with Client(Server(app)) as client:
            resp = await client.get("/api/me", headers={"Cookie": "sessionUUID=stale"})
            assert resp.status == 401

    @pytest.mark.asyncio
    async def test_no_provider_configured(self, settings):
        """Test an empty registry yields a 500 JSON error."""
        manager = AuthenticationManager(ProviderRegistry(), settings=settings)
        async with Client(Server(build_app(manager))) as client:
            resp = await client.get("/api/me")
            assert resp.status == 500
            assert await resp.json() == {"error": "Authentication not configured"}

    def test_wants_html(self):
        """Test browser navigation is detected from the Accept header."""

        class FakeRequest:
            def __init__(self, accept):
                self.headers = {"Accept": accept} if accept else {}

        assert wants_html(FakeRequest("text/html,application/xhtml+xml"))
        assert not wants_html(FakeRequest("application/json"))
        assert not wants_html(FakeRequest(None))


class TestBrowserLogin:
    """Tests for /auth/login and /auth/callback."""

    @pytest.mark.asyncio
    async def test_full_login_flow(self, app):
        """Test login, callback and a following authenticated request."""
        target = f"{BASE_URL}/api/me"
        async with Client(Server(app)) as client:
            resp = await client.get("/auth/login", params={"redirect": target}, allow_redirects=False)
            assert resp.status == 302
            assert resp.cookies[NEXT_COOKIE_NAME].value == target
            state = parse_qs(urlparse(resp.headers["Location"]).query)["state"][0]

            resp = await client.get(
                "/auth/callback",
                params={"code": "good", "state": state},
                allow_redirects=False,
            )
            assert resp.status == 302
            assert resp.headers["Location"] == target
            session_uuid = resp.cookies["sessionUUID"].value
            assert resp.cookies["sessionUUID"]["httponly"]

            resp = await client.get("/api/me", headers={"Cookie": f"sessionUUID={session_uuid}"})
            assert resp.status == 200
            assert await resp.json() == {"user": "alice", "uuid": session_uuid}

    @pytest.mark.asyncio
    async def test_offsite_redirect_blocked(self, app):
        """Test a redirect to another host is replaced with the base URL."""
        async with Client(Server(app)) as client:
            resp = await client.get(
                "/auth/login",
                params={"redirect": "https://evil.example.com/steal"},
                allow_redirects=False,
            )
            assert resp.status == 302
            assert resp.cookies[NEXT_COOKIE_NAME].value == BASE_URL

    @pytest.mark.asyncio
    async def test_callback_provider_error(self, app):
        """Test provider errors are reported without echoing their details."""
        async with Client(Server(app)) as client:
            resp = await client.get("/auth/callback", params={"error": "access_denied"})
            assert resp.status == 401
            assert await resp.text() == "Authentication failed: access_denied"

            resp = await client.get(
                "/auth/callback",
                params={"error": "server_error", "error_description": "<script>"},
            )
            assert resp.status == 401
            assert await resp.text() == "Authentication failed: authentication_failed"

    @pytest.mark.asyncio
    async def test_callback_missing_parameters(self, app):
        """Test a callback without code and state is a bad request."""
        async with Client(Server(app)) as client:
            resp = await client.get("/auth/callback", params={"code": "good"})
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_callback_unknown_state(self, app):
        """Test a forged state is rejected."""
        async with Client(Server(app)) as client:
            resp = await client.get("/auth/callback", params={"code": "good", "state": "forged"})
            assert resp.status == 401
            assert await resp.text() == "Authentication failed"


class TestManageSession:
    """Tests for the PKCE exchange endpoint."""

    @pytest.mark.asyncio
    async def test_exchange(self, app):
        """Test a PKCE exchange returns the session and sets the cookie."""
        async with Client(Server(app)) as client:
            resp = await _exchange(client)
            assert resp.status == 200
            body = await resp.json()
            assert body["values"]["user"] == {"name": "Alice", "email": "alice@example.com"}
            assert resp.cookies["sessionUUID"].value == body["uuid"]

    @pytest.mark.asyncio
    async def test_rejected_code(self, app):
        """Test a provider rejection is a 401 with the reason."""
        async with Client(Server(app)) as client:
            resp = await _exchange(client, code="bad")
            assert resp.status == 401
            assert await resp.json() == {"error": "Code already used"}

    @pytest.mark.asyncio
    async def test_invalid_json(self, app):
        """Test a malformed body is a bad request."""
        async with Client(Server(app)) as client:
            resp = await client.post(
                "/auth/manage-session",
                data="not json",
                headers={"Content-Type": "application/json"},
            )
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_provider_unreachable(self, settings):
        """Test an unreachable provider is a 503."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        registry = ProviderRegistry().with_instance_default(
            create_oauth2_metadata("client-1", "s3cret", issuer_url=ISSUER)
        )
        manager = AuthenticationManager(registry, settings=settings, transport=httpx.MockTransport(handler))
        async with Client(Server(build_app(manager))) as client:
            resp = await _exchange(client)
            assert resp.status == 503


class TestLogout:
    """Tests for logout and back-channel logout."""

    @pytest.mark.asyncio
    async def test_logout(self, app):
        """Test logout ends the session and clears the cookie."""
        async with Client(Server(app)) as client:
            session_uuid = (await (await _exchange(client)).json())["uuid"]
            cookie = {"Cookie": f"sessionUUID={session_uuid}"}

            resp = await client.post("/auth/logout", params={"path": "/api/me"}, headers=cookie)
            assert resp.status == 200
            assert await resp.json() == {"status": "logged_out"}
            assert resp.cookies["sessionUUID"].value == ""

            resp = await client.get("/api/me", headers=cookie)
            assert resp.status == 401

    @pytest.mark.asyncio
    async def test_backchannel_logout(self, app, jwt_factory):
        """Test a logout token from the issuer ends the user's sessions."""
        async with Client(Server(app)) as client:
            session_uuid = (await (await _exchange(client)).json())["uuid"]

            logout_token = jwt_factory({"sub": "alice", "iss": ISSUER})
            resp = await client.post("/auth/backchannel-logout", data={"logout_token": logout_token})
            assert resp.status == 200
            assert await resp.json() == {"deleted": 1}

            resp = await client.get("/api/me", headers={"Cookie": f"sessionUUID={session_uuid}"})
            assert resp.status == 401

    @pytest.mark.asyncio
    async def test_backchannel_logout_other_issuer(self, app, jwt_factory):
        """Test a token from an unknown issuer removes nothing."""
        async with Client(Server(app)) as client:
            await _exchange(client)
            logout_token = jwt_factory({"sub": "alice", "iss": "https://other.example.com"})
            resp = await client.post("/auth/backchannel-logout", data={"logout_token": logout_token})
            assert await resp.json() == {"deleted": 0}

    @pytest.mark.asyncio
    async def test_backchannel_logout_without_token(self, app):
        """Test a request without a token answers 200 with nothing deleted."""
        async with Client(Server(app)) as client:
            resp = await client.post("/auth/backchannel-logout", data={})
            assert resp.status == 200
            assert await resp.json() == {"deleted": 0}
