"""Exception types raised by scopeauth.

Resolution failures raise NotFoundError. Anything wrong with the credentials
or the protocol exchange raises AuthenticationError. Network and storage
failures raise InfrastructureError, which is an AuthenticationError so that
callers handling authentication failures also see them.
"""

from __future__ import annotations


class ScopeAuthError(Exception):
    """Base class for all scopeauth errors."""


class NotFoundError(ScopeAuthError):
    """No authentication provider (or module) exists for the request."""


class AuthenticationError(ScopeAuthError):
    """The supplied credentials or session could not be authenticated."""


class InfrastructureError(AuthenticationError):
    """A network or storage failure unrelated to the credentials themselves."""
