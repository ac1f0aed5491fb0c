"""Application hook for shaping sessions built by the OAuth2 module.

Example:
    class TenantCustomizer(SessionCustomizer):
        async def customize_session(self, session, context):
            tenant = context.jwt_claims.get("tenant")
            if tenant:
                session.with_security_key_value("tenantId", tenant)

    metadata = create_oauth2_metadata(..., customizer="myapp.auth:TenantCustomizer")
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any

import structlog

from scopeauth.auth.session import Session
from scopeauth.errors import AuthenticationError

logger = structlog.get_logger()


@dataclass
class CustomizerContext:
    """What the customizer gets to see about the authentication.

    ``access_token`` and ``id_token_claims`` are only set on a fresh token
    exchange; resumed sessions carry the decoded access-token claims alone.
    """

    jwt_claims: dict[str, Any]
    access_token: str | None = None
    id_token_claims: dict[str, Any] | None = None


class SessionCustomizer:
    """Override either hook; the defaults do nothing."""

    async def customize_session(self, session: Session, context: CustomizerContext) -> None:
        """Called after the session is built from token claims."""

    async def final_customize_session(self, session: Session, system_session: Session) -> None:
        """Called last, with an elevated session for any lookups it needs."""


def load_customizer(ref: SessionCustomizer | str | None) -> SessionCustomizer | None:
    """Resolve a customizer reference.

    Args:
        ref: An instance, a ``package.module:attribute`` path (classes are
            instantiated with no arguments), or None

    Returns:
        The customizer, or None if no reference was given

    Raises:
        AuthenticationError: If the path cannot be imported or does not
            name a SessionCustomizer
    """
    if ref is None or isinstance(ref, SessionCustomizer):
        return ref

    module_name, sep, attr = ref.partition(":")
    if not sep:
        module_name, _, attr = ref.rpartition(".")
    if not module_name or not attr:
        raise AuthenticationError(f"Invalid customizer reference: {ref}")

    try:
        target = getattr(importlib.import_module(module_name), attr)
        customizer = target() if isinstance(target, type) else target
    except (ImportError, AttributeError, TypeError) as e:
        logger.warning("Error loading session customizer", customizer=ref, error=str(e))
        raise AuthenticationError(f"Could not load session customizer: {ref}") from e

    if not isinstance(customizer, SessionCustomizer):
        raise AuthenticationError(f"{ref} is not a SessionCustomizer")
    return customizer
