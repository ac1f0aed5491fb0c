"""OIDC discovery and provider endpoint caching.

Discovery documents are fetched once per provider (keyed by the provider
name and its issuer URL) and kept until cleared. Providers configured with manual
endpoints never hit the network.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from authlib.oidc.discovery import get_well_known_url

from scopeauth.auth.memoization import Memoization
from scopeauth.auth.metadata import OAuth2MetaData
from scopeauth.errors import AuthenticationError, InfrastructureError

logger = structlog.get_logger()


@dataclass
class ProviderEndpoints:
    """Endpoints of an OAuth2 authorization server."""

    authorization_endpoint: str
    token_endpoint: str
    issuer: str | None = None
    jwks_uri: str | None = None
    end_session_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_discovery(cls, document: dict[str, Any]) -> ProviderEndpoints:
        """Build endpoints from a discovery document.

        Raises:
            AuthenticationError: If the document lacks the required endpoints
        """
        authorization_endpoint = document.get("authorization_endpoint")
        token_endpoint = document.get("token_endpoint")
        if not authorization_endpoint or not token_endpoint:
            raise AuthenticationError("Discovery document is missing required endpoints")
        return cls(
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
            issuer=document.get("issuer"),
            jwks_uri=document.get("jwks_uri"),
            end_session_endpoint=document.get("end_session_endpoint"),
            userinfo_endpoint=document.get("userinfo_endpoint"),
            raw=document,
        )


async def fetch_discovery_document(
    issuer: str,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = 10.0,
) -> dict[str, Any]:
    """Fetch the OpenID configuration of an issuer.

    Args:
        issuer: Issuer base URL (e.g., https://mycompany.okta.com)
        transport: Optional httpx transport (tests pass a MockTransport)
        timeout: Request timeout in seconds

    Returns:
        The discovery document

    Raises:
        InfrastructureError: If the request fails or returns a non-2xx status
        AuthenticationError: If the response is not a JSON object
    """
    discovery_url = get_well_known_url(issuer, external=True)
    logger.debug("Fetching OIDC discovery document", url=discovery_url)
    try:
        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            response = await client.get(discovery_url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("OIDC discovery failed", issuer=issuer, error=str(e))
        raise InfrastructureError(f"OIDC discovery failed for {issuer}") from e

    try:
        document = response.json()
    except ValueError as e:
        raise AuthenticationError("Discovery document is not valid JSON") from e
    if not isinstance(document, dict):
        raise AuthenticationError("Discovery document is not a JSON object")
    return document


class OIDCMetadataCache:
    """Resolves and caches provider endpoints per provider name."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self._transport = transport
        self._timeout = timeout
        self._cache: Memoization[tuple[str, str | None], ProviderEndpoints] = Memoization(
            timeout=None,
            may_store_none=False,
        )

    async def get(self, metadata: OAuth2MetaData) -> ProviderEndpoints:
        """Return the endpoints for a provider, discovering them on first use."""
        if not metadata.uses_discovery:
            return ProviderEndpoints(
                authorization_endpoint=metadata.authorize_url,  # type: ignore[arg-type]
                token_endpoint=metadata.token_url,  # type: ignore[arg-type]
                issuer=metadata.base_url,
            )

        async def discover(_key: tuple[str, str | None]) -> ProviderEndpoints:
            document = await fetch_discovery_document(
                metadata.base_url,  # type: ignore[arg-type]
                transport=self._transport,
                timeout=self._timeout,
            )
            endpoints = ProviderEndpoints.from_discovery(document)
            logger.info(
                "OIDC provider discovered",
                provider=metadata.name,
                issuer=endpoints.issuer,
            )
            return endpoints

        endpoints = await self._cache.get_or_compute((metadata.name, metadata.base_url), discover)
        assert endpoints is not None
        return endpoints

    def clear(self) -> None:
        """Forget all discovered providers."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
