"""Authentication module implementations.

create_module() maps provider metadata to the module that handles it.
"""

from __future__ import annotations

from typing import Any

from scopeauth.auth.metadata import AuthenticationMetaData, AuthenticationType
from scopeauth.auth.modules.anonymous import AnonymousModule
from scopeauth.auth.modules.base import AuthenticationModule
from scopeauth.auth.modules.oauth2 import OAuth2Module
from scopeauth.errors import NotFoundError


def create_module(metadata: AuthenticationMetaData, **deps: Any) -> AuthenticationModule:
    """Create the module for a provider.

    Args:
        metadata: Provider metadata
        **deps: Collaborators for modules that need them (record_store,
            session_stores, settings, oidc_cache, transport)

    Returns:
        A new module instance

    Raises:
        NotFoundError: If no module handles the metadata's type
    """
    if metadata.type == AuthenticationType.FULLY_ANONYMOUS:
        return AnonymousModule()
    elif metadata.type == AuthenticationType.OAUTH2:
        record_store = deps.get("record_store")
        if record_store is None:
            raise ValueError("OAuth2 authentication requires a record_store")
        return OAuth2Module(
            record_store=record_store,
            session_stores=deps.get("session_stores"),
            settings=deps.get("settings"),
            oidc_cache=deps.get("oidc_cache"),
            transport=deps.get("transport"),
        )
    raise NotFoundError(f"No authentication module for type: {metadata.type}")


__all__ = [
    "AnonymousModule",
    "AuthenticationModule",
    "OAuth2Module",
    "create_module",
]
