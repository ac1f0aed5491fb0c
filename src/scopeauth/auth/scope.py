"""Authentication scopes.

A scope says where an authentication provider applies. There are exactly
three kinds, from most to least specific:

- ``Api``: requests served by one API (wraps that API's metadata)
- ``RouteProvider``: requests served by one route provider, e.g. an SPA mount
- ``InstanceDefault``: everything else

Scopes are value objects. Two ``Api`` scopes are equal when their wrapped
metadata are equal, so they can be used directly as registry keys.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Named(Protocol):
    """Anything that can be wrapped by a scope and reports a name."""

    name: str | None


def _name_of(metadata: Any) -> str:
    name = metadata.name if isinstance(metadata, Named) else None
    return str(name) if name is not None else "unknown"


class AuthScope:
    """Base class for the closed set of scope variants."""

    __slots__ = ()

    @staticmethod
    def instance_default() -> InstanceDefault:
        return InstanceDefault()

    @staticmethod
    def api(api_metadata: Any) -> Api:
        return Api(api_metadata)

    @staticmethod
    def route_provider(route_metadata: Any) -> RouteProvider:
        return RouteProvider(route_metadata)


@dataclass(frozen=True)
class InstanceDefault(AuthScope):
    """Instance-wide default scope. All instances are equal."""

    def __str__(self) -> str:
        return "AuthScope.InstanceDefault"


@dataclass(frozen=True)
class Api(AuthScope):
    """Scope for requests handled by a specific API."""

    metadata: Any

    def __post_init__(self) -> None:
        if self.metadata is None:
            raise ValueError("api metadata must not be None")

    def __str__(self) -> str:
        return f"AuthScope.Api{{apiName={_name_of(self.metadata)}}}"


@dataclass(frozen=True)
class RouteProvider(AuthScope):
    """Scope for requests handled by a specific route provider (e.g. an SPA)."""

    metadata: Any

    def __post_init__(self) -> None:
        if self.metadata is None:
            raise ValueError("route metadata must not be None")

    def __str__(self) -> str:
        return f"AuthScope.RouteProvider{{name={_name_of(self.metadata)}}}"
