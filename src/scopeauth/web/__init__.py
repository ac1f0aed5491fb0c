"""aiohttp integration for scoped authentication."""

from scopeauth.web.handlers import AuthRoutes, wants_html

__all__ = ["AuthRoutes", "wants_html"]
