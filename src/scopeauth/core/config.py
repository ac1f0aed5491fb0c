"""Configuration types with environment variable support.

All settings can be configured via environment variables with the SCOPEAUTH_ prefix.
Example: SCOPEAUTH_ACCESS_TOKEN_CACHE_TTL=30 caches access tokens for 30 seconds.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


class AuthSettings(BaseSettings):
    """Runtime settings for authentication resolution and session handling."""

    model_config = SettingsConfigDict(
        env_prefix="SCOPEAUTH_",
        case_sensitive=False,
        extra="ignore",
    )

    memoize_enabled: bool = Field(
        default=True,
        description="Memoize session uuid to access token lookups. Disable for test determinism.",
    )
    access_token_cache_ttl: float = Field(
        default=60.0,
        description="Seconds a memoized access token may be served without a storage round-trip.",
    )
    access_token_cache_max_size: int = Field(
        default=1000,
        description="Maximum memoized access tokens before LRU eviction.",
    )
    session_store_ttl: int = Field(
        default=3600,
        description="Default TTL in seconds for sessions kept in the session store.",
    )
    state_ttl: int = Field(
        default=300,
        description="Seconds a login redirect state value stays usable.",
    )
    default_state_bytes: int = Field(
        default=32,
        description="Random bytes in a state value when the state field has no max length.",
    )
    http_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for discovery and token endpoint calls.",
    )
    session_cookie_name: str = Field(
        default="sessionUUID",
        description="Cookie carrying the session uuid.",
    )
    auth_path_prefix: str = Field(
        default="/auth",
        description="Path prefix for login, callback, logout and session routes.",
    )
    base_url: str = Field(
        default="http://localhost:8080",
        description="Public base URL of the application (redirect target after login).",
    )
    public_paths: list[str] = Field(
        default_factory=list,
        description="Path prefixes served without a session.",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )

    @classmethod
    def from_file(cls, path: str | Path) -> AuthSettings:
        """Build settings from a YAML/TOML file.

        The file may hold the settings at top level or under a ``scopeauth``
        section. Environment variables still apply to keys the file omits.
        """
        data = load_config_from_file(path)
        section = data.get("scopeauth", data)
        if not isinstance(section, dict):
            raise ValueError(f"Invalid scopeauth section in {path}")
        return cls(**section)

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a flat dictionary for display."""
        return self.model_dump()


_config: AuthSettings | None = None


def get_config() -> AuthSettings:
    """Get the global configuration instance.

    Returns a cached instance of AuthSettings that reads from environment variables.
    The instance is created once and cached for the lifetime of the process.

    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = AuthSettings()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    Useful for testing.
    """
    global _config
    _config = None
