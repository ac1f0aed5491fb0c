"""Per-request context used to pick an authentication provider."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

from scopeauth.auth.scope import Named


def _path_prefix(metadata: Any) -> str | None:
    return getattr(metadata, "path_prefix", None)


def _longest_prefix_match(path: str, candidates: Iterable[Any]) -> Any | None:
    best = None
    best_len = -1
    for candidate in candidates:
        prefix = _path_prefix(candidate)
        if prefix is None:
            continue
        prefix = prefix.rstrip("/")
        if (path == prefix or path.startswith(prefix + "/")) and len(prefix) > best_len:
            best = candidate
            best_len = len(prefix)
    return best


@dataclass(frozen=True)
class ResolutionContext:
    """Whatever is known about the current request's scope.

    Built once per request. The ``with_*`` builders return a new context,
    so a context handed to the resolver never changes underneath it.
    """

    api_name: str | None = None
    api_metadata: Any = None
    route_provider_name: str | None = None
    route_metadata: Any = None
    request_path: str | None = None

    def with_api_name(self, api_name: str | None) -> ResolutionContext:
        return replace(self, api_name=api_name)

    def with_api_metadata(self, api_metadata: Any) -> ResolutionContext:
        """Set the API metadata, copying its name into ``api_name`` when it has one."""
        api_name = self.api_name
        if isinstance(api_metadata, Named) and api_metadata.name is not None:
            api_name = str(api_metadata.name)
        return replace(self, api_metadata=api_metadata, api_name=api_name)

    def with_route_provider_name(self, route_provider_name: str | None) -> ResolutionContext:
        return replace(self, route_provider_name=route_provider_name)

    def with_route_metadata(self, route_metadata: Any) -> ResolutionContext:
        """Set the route metadata, copying its name into ``route_provider_name``."""
        route_provider_name = self.route_provider_name
        if isinstance(route_metadata, Named) and route_metadata.name is not None:
            route_provider_name = str(route_metadata.name)
        return replace(
            self,
            route_metadata=route_metadata,
            route_provider_name=route_provider_name,
        )

    def with_request_path(self, request_path: str | None) -> ResolutionContext:
        return replace(self, request_path=request_path)

    @classmethod
    def for_path(
        cls,
        path: str,
        apis: Iterable[Any] = (),
        routes: Iterable[Any] = (),
    ) -> ResolutionContext:
        """Build a context for a request path.

        The API and route provider whose ``path_prefix`` is the longest
        match for ``path`` are attached. Metadata without a ``path_prefix``
        is ignored.

        Args:
            path: The request path (e.g. ``/api/v1/orders``)
            apis: Known API metadata objects
            routes: Known route provider metadata objects

        Returns:
            A context with request_path set and any matching metadata attached
        """
        context = cls(request_path=path)
        api = _longest_prefix_match(path, apis)
        if api is not None:
            context = context.with_api_metadata(api)
        route = _longest_prefix_match(path, routes)
        if route is not None:
            context = context.with_route_metadata(route)
        return context
