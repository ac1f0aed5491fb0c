from scopeauth.core.config import (
    AuthSettings,
    clear_config,
    get_config,
    load_config_from_file,
)

__all__ = [
    "AuthSettings",
    "clear_config",
    "get_config",
    "load_config_from_file",
]
