"""Authentication provider metadata.

Provider metadata describes *which* authentication module governs a scope
and how it is configured. Scope payloads (``ApiMetaData`` and
``RouteProviderMetaData``) describe the slices of the application that
scopes point at.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from scopeauth.auth.customizer import SessionCustomizer


class AuthenticationType(str, Enum):
    """Authentication module variants."""

    FULLY_ANONYMOUS = "fully_anonymous"
    OAUTH2 = "oauth2"


@dataclass(frozen=True)
class ApiMetaData:
    """An API served by the application. Used as an ``Api`` scope payload."""

    name: str
    path_prefix: str | None = None
    version: str | None = None


@dataclass(frozen=True)
class RouteProviderMetaData:
    """A route provider (e.g. an SPA mount). Used as a ``RouteProvider`` scope payload."""

    name: str
    path_prefix: str | None = None


@dataclass(eq=False)
class AuthenticationMetaData:
    """Base provider metadata: a name and the module type that handles it."""

    name: str
    type: AuthenticationType


@dataclass(eq=False)
class AnonymousMetaData(AuthenticationMetaData):
    """Fully anonymous authentication - every request gets a session."""

    name: str = "anonymous"
    type: AuthenticationType = AuthenticationType.FULLY_ANONYMOUS


@dataclass(eq=False)
class OAuth2MetaData(AuthenticationMetaData):
    """OAuth2 / OpenID Connect provider configuration.

    For OIDC providers set ``base_url`` to the issuer and endpoints are
    discovered via .well-known/openid-configuration. For plain OAuth2
    providers set ``authorize_url`` and ``token_url`` instead.
    """

    name: str = "oauth2"
    type: AuthenticationType = AuthenticationType.OAUTH2
    client_id: str = ""
    client_secret: str | None = field(default=None, repr=False)
    # OIDC issuer (discovery)
    base_url: str | None = None
    # Manual endpoints (skip discovery when both are set)
    authorize_url: str | None = None
    token_url: str | None = None
    scopes: str = "openid profile email"
    redirect_state_table: str = "oauth2State"
    user_session_table: str = "userSession"
    # Max length of the stored state field; None uses the default byte count
    state_max_length: int | None = None
    session_store_enabled: bool = False
    # SessionCustomizer instance or "package.module:attribute" path
    customizer: SessionCustomizer | str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate that a client id and either an issuer or manual endpoints are provided."""
        if not self.client_id:
            raise ValueError("OAuth2MetaData requires a client_id")
        has_manual = self.authorize_url and self.token_url
        if not self.base_url and not has_manual:
            raise ValueError(
                "OAuth2MetaData requires either base_url (for OIDC discovery) "
                "or authorize_url + token_url (for manual OAuth2)"
            )
        if self.state_max_length is not None and self.state_max_length < 8:
            raise ValueError("state_max_length must be at least 8")

    @property
    def uses_discovery(self) -> bool:
        return not (self.authorize_url and self.token_url)


def create_oauth2_metadata(
    client_id: str,
    client_secret: str | None,
    issuer_url: str | None = None,
    name: str = "oauth2",
    scopes: list[str] | str | None = None,
    **kwargs: Any,
) -> OAuth2MetaData:
    """Create OAuth2/OIDC provider metadata.

    Args:
        client_id: OAuth client ID
        client_secret: OAuth client secret (None for public clients)
        issuer_url: OIDC issuer URL (e.g., https://mycompany.okta.com)
        name: Provider name, used in logs and the discovery cache key
        scopes: OAuth scopes to request (defaults to openid, profile, email)
        **kwargs: Additional OAuth2MetaData fields

    Returns:
        Configured OAuth2MetaData
    """
    if isinstance(scopes, list):
        scopes = " ".join(scopes)
    return OAuth2MetaData(
        name=name,
        client_id=client_id,
        client_secret=client_secret,
        base_url=issuer_url,
        scopes=scopes or "openid profile email",
        **kwargs,
    )
