"""scopeauth - scoped authentication resolution and OAuth2/OIDC sessions."""

__version__ = "0.1.0"
