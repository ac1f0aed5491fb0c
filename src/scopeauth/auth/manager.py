"""Ties resolution, modules and storage together for request handling."""

from __future__ import annotations

from collections.abc import Mapping

import httpx
import structlog

from scopeauth.auth.context import ResolutionContext
from scopeauth.auth.metadata import AuthenticationMetaData, OAuth2MetaData
from scopeauth.auth.modules import create_module
from scopeauth.auth.modules.base import AuthenticationModule
from scopeauth.auth.modules.oauth2 import OAuth2Module
from scopeauth.auth.oidc import OIDCMetadataCache
from scopeauth.auth.records import MemoryRecordStore, RecordStore
from scopeauth.auth.registry import ProviderRegistry
from scopeauth.auth.resolver import resolve
from scopeauth.auth.session import Session, SessionStore, SessionStoreRegistry
from scopeauth.auth.tokens import decode_unverified
from scopeauth.core.config import AuthSettings, get_config
from scopeauth.errors import AuthenticationError

logger = structlog.get_logger()


class AuthenticationManager:
    """Resolves the provider for a request and delegates to its module.

    Modules are created on first use and reused for every later request
    resolved to the same provider name.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        record_store: RecordStore | None = None,
        session_store: SessionStore | None = None,
        settings: AuthSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.registry = registry
        self.settings = settings or get_config()
        self.record_store = record_store or MemoryRecordStore()
        self.session_stores = SessionStoreRegistry(session_store)
        self._transport = transport
        self._oidc = OIDCMetadataCache(transport=transport, timeout=self.settings.http_timeout)
        # keyed by provider instance; several providers may share a name
        self._modules: dict[AuthenticationMetaData, AuthenticationModule] = {}

    def resolve(self, context: ResolutionContext) -> AuthenticationMetaData:
        return resolve(self.registry, context)

    def module_for(self, metadata: AuthenticationMetaData) -> AuthenticationModule:
        module = self._modules.get(metadata)
        if module is None:
            module = create_module(
                metadata,
                record_store=self.record_store,
                session_stores=self.session_stores,
                settings=self.settings,
                oidc_cache=self._oidc,
                transport=self._transport,
            )
            self._modules[metadata] = module
            logger.debug(
                "Created authentication module",
                provider=metadata.name,
                module=type(module).__name__,
            )
        return module

    async def create_session(self, context: ResolutionContext, fields: Mapping[str, str]) -> Session:
        """Authenticate a request.

        Args:
            context: Scope information for provider resolution
            fields: Values from the request (code, state, sessionUUID, ...)

        Returns:
            The authenticated session

        Raises:
            NotFoundError: If no provider governs the request
            AuthenticationError: If authentication fails
        """
        metadata = self.resolve(context)
        return await self.module_for(metadata).create_session(metadata, fields)

    async def is_session_valid(self, context: ResolutionContext, session: Session | None) -> bool:
        metadata = self.resolve(context)
        return await self.module_for(metadata).is_session_valid(metadata, session)

    async def logout(self, context: ResolutionContext, session_uuid: str | None) -> None:
        metadata = self.resolve(context)
        await self.module_for(metadata).logout(metadata, session_uuid)

    async def login_redirect_url(self, context: ResolutionContext, original_url: str) -> str:
        metadata = self.resolve(context)
        return await self.module_for(metadata).get_login_redirect_url(metadata, original_url)

    def uses_session_cookie(self, context: ResolutionContext) -> bool:
        metadata = self.resolve(context)
        return self.module_for(metadata).uses_session_cookie()

    async def back_channel_logout(self, context: ResolutionContext, logout_token: str | None) -> int:
        """Process an OIDC back-channel logout for the provider governing ``context``."""
        metadata = self.resolve(context)
        module = self.module_for(metadata)
        if not isinstance(module, OAuth2Module):
            raise AuthenticationError(f"Provider {metadata.name} does not support back-channel logout")
        return await module.back_channel_logout(metadata, logout_token)

    async def back_channel_logout_for_token(self, logout_token: str | None) -> int:
        """Process a back-channel logout without a request scope.

        The token's ``iss`` claim selects the OAuth2 providers whose issuer
        matches; a token without ``iss`` is offered to every OAuth2 provider.

        Returns:
            Total number of sessions removed
        """
        if not logout_token:
            logger.warning("Back-channel logout received with empty logout_token")
            return 0
        try:
            issuer = decode_unverified(logout_token).get("iss")
        except AuthenticationError as e:
            logger.warning("Unreadable back-channel logout token", error=str(e))
            return 0

        deleted = 0
        for metadata in self.registry.providers():
            if not isinstance(metadata, OAuth2MetaData):
                continue
            if issuer and metadata.base_url and metadata.base_url.rstrip("/") != str(issuer).rstrip("/"):
                continue
            module = self.module_for(metadata)
            if isinstance(module, OAuth2Module):
                deleted += await module.back_channel_logout(metadata, logout_token)
        return deleted

    def clear_caches(self) -> None:
        """Drop discovered provider metadata and memoized access tokens."""
        self._oidc.clear()
        for module in self._modules.values():
            if isinstance(module, OAuth2Module):
                module.clear_caches()
