"""Shared fixtures for scopeauth tests."""

from __future__ import annotations

import base64
import json
import time
from collections.abc import Callable
from typing import Any

import pytest

from scopeauth.core.config import clear_config


def _b64(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def make_jwt(claims: dict[str, Any] | None = None, expires_in: float | None = 3600, **extra: Any) -> str:
    """Build an unsigned compact JWT with the given claims."""
    payload: dict[str, Any] = {"sub": "user-123", "email": "user@example.com", "name": "Test User"}
    if expires_in is not None:
        payload["exp"] = int(time.time() + expires_in)
    payload.update(claims or {})
    payload.update(extra)
    payload = {key: value for key, value in payload.items() if value is not None}
    header = {"alg": "RS256", "typ": "JWT"}
    return f"{_b64(header)}.{_b64(payload)}.fakesignature"


@pytest.fixture
def jwt_factory() -> Callable[..., str]:
    return make_jwt


@pytest.fixture(autouse=True)
def _reset_config():
    clear_config()
    yield
    clear_config()
