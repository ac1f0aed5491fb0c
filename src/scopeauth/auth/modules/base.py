"""Interface shared by authentication modules."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping

from scopeauth.auth.metadata import AuthenticationMetaData
from scopeauth.auth.session import Session
from scopeauth.errors import AuthenticationError


class AuthenticationModule(ABC):
    """Turns request context values into an application session.

    One module instance serves one provider; the provider metadata is passed
    to every call.
    """

    @abstractmethod
    async def create_session(
        self,
        metadata: AuthenticationMetaData,
        context: Mapping[str, str],
    ) -> Session:
        """Build a session from request context values.

        Raises:
            AuthenticationError: If the values cannot be authenticated
        """

    @abstractmethod
    async def is_session_valid(self, metadata: AuthenticationMetaData, session: Session | None) -> bool:
        """Check a previously created session. Invalid input returns False."""

    async def logout(self, metadata: AuthenticationMetaData, session_uuid: str | None) -> None:
        """End a session. Best effort: failures are logged, never raised."""

    def uses_session_cookie(self) -> bool:
        return False

    async def get_login_redirect_url(self, metadata: AuthenticationMetaData, original_url: str) -> str:
        """URL to send a browser to for interactive login."""
        raise AuthenticationError(f"{type(self).__name__} does not support interactive login")
