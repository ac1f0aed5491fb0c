"""Registry of authentication providers keyed by scope."""

from __future__ import annotations

import structlog

from scopeauth.auth.metadata import AuthenticationMetaData
from scopeauth.auth.scope import AuthScope, InstanceDefault

logger = structlog.get_logger()


class ProviderRegistry:
    """Maps scopes to provider metadata.

    Lookups use scope value-equality, so a scope built from an equal
    payload finds the provider registered under the original scope.
    Scope payloads must be hashable.
    """

    def __init__(self) -> None:
        self._providers: dict[AuthScope, AuthenticationMetaData] = {}

    def register(self, scope: AuthScope, metadata: AuthenticationMetaData) -> None:
        """Register (or replace) the provider for a scope."""
        existing = self._providers.get(scope)
        if existing is not None and existing is not metadata:
            logger.warning(
                "Replacing authentication provider",
                scope=str(scope),
                old_provider=existing.name,
                new_provider=metadata.name,
            )
        self._providers[scope] = metadata

    def find(self, scope: AuthScope) -> AuthenticationMetaData | None:
        return self._providers.get(scope)

    def set_default(self, metadata: AuthenticationMetaData) -> None:
        self.register(InstanceDefault(), metadata)

    def with_instance_default(self, metadata: AuthenticationMetaData) -> ProviderRegistry:
        """Fluent form of set_default."""
        self.set_default(metadata)
        return self

    @property
    def default(self) -> AuthenticationMetaData | None:
        return self._providers.get(InstanceDefault())

    def scopes(self) -> list[AuthScope]:
        return list(self._providers)

    def providers(self) -> list[AuthenticationMetaData]:
        """Distinct registered providers, in registration order."""
        seen: dict[int, AuthenticationMetaData] = {}
        for metadata in self._providers.values():
            seen.setdefault(id(metadata), metadata)
        return list(seen.values())

    def __contains__(self, scope: object) -> bool:
        return scope in self._providers

    def __len__(self) -> int:
        return len(self._providers)
