"""Scoped authentication for multi-API applications.

Each request is governed by the authentication provider registered for the
most specific scope that applies to it: the API it targets, then the route
provider serving it, then the instance default.

Example usage:

    from scopeauth.auth import (
        ApiMetaData,
        AnonymousMetaData,
        AuthenticationManager,
        AuthScope,
        ProviderRegistry,
        ResolutionContext,
        create_oauth2_metadata,
    )

    orders_api = ApiMetaData(name="orders", path_prefix="/api/orders")

    registry = ProviderRegistry().with_instance_default(AnonymousMetaData())
    registry.register(
        AuthScope.api(orders_api),
        create_oauth2_metadata(
            client_id="...",
            client_secret="...",
            issuer_url="https://mycompany.okta.com",
        ),
    )

    manager = AuthenticationManager(registry)
    context = ResolutionContext.for_path("/api/orders/42", apis=[orders_api])
    session = await manager.create_session(context, {"sessionUUID": "..."})
"""

from scopeauth.auth.context import ResolutionContext
from scopeauth.auth.customizer import CustomizerContext, SessionCustomizer
from scopeauth.auth.manager import AuthenticationManager
from scopeauth.auth.memoization import Memoization
from scopeauth.auth.metadata import (
    AnonymousMetaData,
    ApiMetaData,
    AuthenticationMetaData,
    AuthenticationType,
    OAuth2MetaData,
    RouteProviderMetaData,
    create_oauth2_metadata,
)
from scopeauth.auth.modules import (
    AnonymousModule,
    AuthenticationModule,
    OAuth2Module,
    create_module,
)
from scopeauth.auth.oidc import OIDCMetadataCache, ProviderEndpoints
from scopeauth.auth.records import JsonRecordStore, MemoryRecordStore, RecordStore
from scopeauth.auth.registry import ProviderRegistry
from scopeauth.auth.resolver import resolve
from scopeauth.auth.scope import Api, AuthScope, InstanceDefault, RouteProvider
from scopeauth.auth.session import (
    MemorySessionStore,
    Session,
    SessionStore,
    SessionStoreRegistry,
    User,
)

__all__ = [
    # Scopes and resolution
    "Api",
    "AuthScope",
    "InstanceDefault",
    "RouteProvider",
    "ResolutionContext",
    "ProviderRegistry",
    "resolve",
    # Metadata
    "AnonymousMetaData",
    "ApiMetaData",
    "AuthenticationMetaData",
    "AuthenticationType",
    "OAuth2MetaData",
    "RouteProviderMetaData",
    "create_oauth2_metadata",
    # Modules
    "AnonymousModule",
    "AuthenticationModule",
    "OAuth2Module",
    "create_module",
    "AuthenticationManager",
    # Sessions and storage
    "Session",
    "User",
    "SessionStore",
    "MemorySessionStore",
    "SessionStoreRegistry",
    "RecordStore",
    "MemoryRecordStore",
    "JsonRecordStore",
    # Supporting
    "CustomizerContext",
    "SessionCustomizer",
    "Memoization",
    "OIDCMetadataCache",
    "ProviderEndpoints",
]
