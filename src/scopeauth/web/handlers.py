"""aiohttp routes and middleware for scoped authentication.

Routes (under the configured prefix, default /auth):

    GET  /login?redirect=<url>   start a browser login
    GET  /callback               provider redirect target (code + state)
    POST /manage-session         PKCE exchange from a frontend
    POST /logout                 end the current session
    POST /backchannel-logout     OIDC back-channel logout

The middleware resumes the session named by the session cookie for every
other request and stores it in ``request["session"]``.

Example usage:

    manager = AuthenticationManager(registry)
    routes = AuthRoutes(manager, apis=[orders_api])

    app = web.Application(middlewares=[routes.session_middleware])
    routes.register_routes(app)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import Any
from urllib.parse import urlparse

import structlog
from aiohttp import web

from scopeauth.auth.context import ResolutionContext
from scopeauth.auth.manager import AuthenticationManager
from scopeauth.auth.session import Session
from scopeauth.errors import AuthenticationError, InfrastructureError, NotFoundError

logger = structlog.get_logger()

NEXT_COOKIE_NAME = "scopeauth_next"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def wants_html(request: web.Request) -> bool:
    """True for browser navigation requests."""
    return "text/html" in request.headers.get("Accept", "")


class AuthRoutes:
    """Login, callback, session and logout handlers plus the session middleware."""

    def __init__(
        self,
        manager: AuthenticationManager,
        apis: Iterable[Any] = (),
        routes: Iterable[Any] = (),
    ):
        """Initialize the routes.

        Args:
            manager: Authentication manager handling the requests
            apis: API metadata used to resolve a request path to a scope
            routes: Route provider metadata used the same way
        """
        self._manager = manager
        self._settings = manager.settings
        self._apis = list(apis)
        self._routes = list(routes)
        self._base_url = self._settings.base_url.rstrip("/")
        self._prefix = "/" + self._settings.auth_path_prefix.strip("/")
        self._callback_url = f"{self._base_url}{self._prefix}/callback"
        self._cookie_name = self._settings.session_cookie_name
        self._secure_cookies = self._base_url.startswith("https://")

        parsed = urlparse(self._base_url)
        self._allowed_redirect_hosts = {parsed.netloc.lower()}

    def register_routes(self, app: web.Application) -> None:
        """Register auth routes on an aiohttp application."""
        app.router.add_get(f"{self._prefix}/login", self.handle_login)
        app.router.add_get(f"{self._prefix}/callback", self.handle_callback)
        app.router.add_post(f"{self._prefix}/manage-session", self.handle_manage_session)
        app.router.add_post(f"{self._prefix}/logout", self.handle_logout)
        app.router.add_post(f"{self._prefix}/backchannel-logout", self.handle_backchannel_logout)

    def context_for(self, path: str) -> ResolutionContext:
        return ResolutionContext.for_path(path, apis=self._apis, routes=self._routes)

    def _validate_redirect_url(self, url: str) -> bool:
        """Validate that a redirect URL is safe (same origin)."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        if parsed.netloc.lower() not in self._allowed_redirect_hosts:
            return False
        return parsed.scheme in ("https", "http")

    def _safe_redirect(self, url: str | None) -> str:
        if url and self._validate_redirect_url(url):
            return url
        if url:
            logger.warning("Invalid redirect URL blocked", url=url[:100])
        return self._base_url

    def _set_session_cookie(self, response: web.StreamResponse, session: Session) -> None:
        max_age = session.remaining_seconds
        response.set_cookie(
            self._cookie_name,
            session.uuid,
            max_age=int(max_age) if max_age is not None else None,
            httponly=True,
            secure=self._secure_cookies,
            samesite="Lax",
            path="/",
        )

    async def _login_redirect(self, target: str) -> web.Response:
        """Redirect to the provider's login page, remembering ``target``."""
        context = self.context_for(urlparse(target).path or "/")
        login_url = await self._manager.login_redirect_url(context, self._callback_url)
        response = web.HTTPFound(login_url)
        response.set_cookie(
            NEXT_COOKIE_NAME,
            target,
            max_age=self._settings.state_ttl,
            httponly=True,
            secure=self._secure_cookies,
            samesite="Lax",
            path=self._prefix,
        )
        return response

    async def handle_login(self, request: web.Request) -> web.Response:
        target = self._safe_redirect(request.query.get("redirect"))
        try:
            return await self._login_redirect(target)
        except (AuthenticationError, NotFoundError) as e:
            logger.error("Could not start login", error=str(e))
            return web.Response(
                text="Authentication error. Please try again.",
                status=500,
                content_type="text/plain",
            )

    async def handle_callback(self, request: web.Request) -> web.Response:
        """Complete a browser login: exchange the code and set the session cookie."""
        error = request.query.get("error")
        if error:
            logger.warning(
                "OAuth provider returned error",
                error=error,
                description=request.query.get("error_description"),
            )
            # Sanitize error message - don't expose raw provider messages
            safe_error = "access_denied" if error == "access_denied" else "authentication_failed"
            return web.Response(
                text=f"Authentication failed: {safe_error}",
                status=401,
                content_type="text/plain",
            )

        code = request.query.get("code")
        state = request.query.get("state")
        if not code or not state:
            return web.Response(
                text="Missing authorization code or state",
                status=400,
                content_type="text/plain",
            )

        target = self._safe_redirect(request.cookies.get(NEXT_COOKIE_NAME))
        context = self.context_for(urlparse(target).path or "/")
        try:
            session = await self._manager.create_session(context, {"code": code, "state": state})
        except InfrastructureError as e:
            logger.error("OAuth callback error", error=str(e))
            return web.Response(
                text="Authentication error. Please try again.",
                status=503,
                content_type="text/plain",
            )
        except (AuthenticationError, NotFoundError) as e:
            logger.warning("OAuth callback rejected", error=str(e))
            return web.Response(
                text="Authentication failed",
                status=401,
                content_type="text/plain",
            )

        response = web.HTTPFound(target)
        self._set_session_cookie(response, session)
        response.del_cookie(NEXT_COOKIE_NAME, path=self._prefix)
        return response

    async def handle_manage_session(self, request: web.Request) -> web.Response:
        """Exchange a PKCE authorization code sent by a frontend."""
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "Invalid JSON body"}, status=400)

        fields = {
            key: str(body[key])
            for key in ("code", "codeVerifier", "redirectUri")
            if body.get(key) is not None
        }
        context = self.context_for(str(body.get("path") or "/"))
        try:
            session = await self._manager.create_session(context, fields)
        except InfrastructureError as e:
            logger.error("Session exchange error", error=str(e))
            return web.json_response({"error": "Authentication service unavailable"}, status=503)
        except (AuthenticationError, NotFoundError) as e:
            return web.json_response({"error": str(e)}, status=401)

        response = web.json_response({"uuid": session.uuid, "values": session.values_for_frontend})
        self._set_session_cookie(response, session)
        return response

    async def handle_logout(self, request: web.Request) -> web.Response:
        """End the session named by the cookie and clear the cookie."""
        session_uuid = request.cookies.get(self._cookie_name)
        if session_uuid:
            context = self.context_for(request.query.get("path", "/"))
            try:
                await self._manager.logout(context, session_uuid)
                logger.info("User logged out", session_uuid=session_uuid)
            except NotFoundError as e:
                logger.warning("Logout for unresolvable provider", error=str(e))

        response = web.json_response({"status": "logged_out"})
        response.del_cookie(self._cookie_name, path="/")
        return response

    async def handle_backchannel_logout(self, request: web.Request) -> web.Response:
        """Accept an OIDC back-channel logout. Always answers 200."""
        form = await request.post()
        logout_token = form.get("logout_token")
        deleted = await self._manager.back_channel_logout_for_token(
            logout_token if isinstance(logout_token, str) else None
        )
        return web.json_response({"deleted": deleted})

    def _is_public(self, path: str) -> bool:
        if path == self._prefix or path.startswith(self._prefix + "/"):
            return True
        return any(path.startswith(public) for public in self._settings.public_paths)

    @web.middleware
    async def session_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        """Resume the request's session before it reaches the handler.

        Browser requests without a valid session are redirected to login;
        other requests get a 401 JSON error.
        """
        if self._is_public(request.path):
            return await handler(request)

        context = self.context_for(request.path)
        session_uuid = request.cookies.get(self._cookie_name)
        fields = {"sessionUUID": session_uuid} if session_uuid else {}

        try:
            session = await self._manager.create_session(context, fields)
        except NotFoundError as e:
            logger.error("No authentication provider for request", path=request.path, error=str(e))
            return web.json_response({"error": "Authentication not configured"}, status=500)
        except InfrastructureError as e:
            logger.error("Authentication backend failure", path=request.path, error=str(e))
            return web.json_response({"error": "Authentication service unavailable"}, status=503)
        except AuthenticationError as e:
            logger.debug("Request not authenticated", path=request.path, reason=str(e))
            if wants_html(request):
                try:
                    return await self._login_redirect(str(request.url))
                except AuthenticationError as login_error:
                    logger.warning("Could not start login", error=str(login_error))
            return web.json_response({"error": "Authentication required"}, status=401)

        request["session"] = session
        response = await handler(request)
        if session.uuid != session_uuid and self._manager.uses_session_cookie(context):
            self._set_session_cookie(response, session)
        return response
