"""Pick the authentication provider for a request.

Scopes are tried from most to least specific and the first registered one
wins:

1. API scope (if the context carries API metadata)
2. Route provider scope (if the context carries route metadata)
3. Instance default

A specific scope present in the context but not registered falls through
to the next one; resolution only fails when nothing along the chain is
registered.
"""

from __future__ import annotations

import structlog

from scopeauth.auth.context import ResolutionContext
from scopeauth.auth.metadata import AuthenticationMetaData
from scopeauth.auth.registry import ProviderRegistry
from scopeauth.auth.scope import Api, InstanceDefault, RouteProvider
from scopeauth.errors import NotFoundError

logger = structlog.get_logger()


def resolve(registry: ProviderRegistry, context: ResolutionContext) -> AuthenticationMetaData:
    """Resolve the authentication provider for the given context.

    Args:
        registry: Registry holding the scoped providers
        context: What is known about the current request

    Returns:
        The provider metadata for the most specific registered scope

    Raises:
        NotFoundError: If no scope in the chain has a registered provider
    """
    if context.api_metadata is not None:
        api_scope = Api(context.api_metadata)
        found = registry.find(api_scope)
        if found is not None:
            logger.debug(
                "Resolved API-specific authentication provider",
                api_name=context.api_name,
                scope=str(api_scope),
                request_path=context.request_path,
            )
            return found
        logger.debug(
            "No API-specific authentication provider found, falling back",
            api_name=context.api_name,
            request_path=context.request_path,
        )

    if context.route_metadata is not None:
        route_scope = RouteProvider(context.route_metadata)
        found = registry.find(route_scope)
        if found is not None:
            logger.debug(
                "Resolved route provider-specific authentication provider",
                route_provider_name=context.route_provider_name,
                scope=str(route_scope),
                request_path=context.request_path,
            )
            return found
        logger.debug(
            "No route provider-specific authentication provider found, falling back",
            route_provider_name=context.route_provider_name,
            request_path=context.request_path,
        )

    found = registry.find(InstanceDefault())
    if found is not None:
        logger.debug(
            "Using instance default authentication provider",
            request_path=context.request_path,
        )
        return found

    message = "No authentication provider found for request"
    if context.request_path is not None:
        message += f" at path: {context.request_path}"
    logger.error(
        message,
        api_name=context.api_name,
        route_provider_name=context.route_provider_name,
    )
    raise NotFoundError(message)
