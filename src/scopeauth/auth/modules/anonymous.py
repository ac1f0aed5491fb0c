"""Fully anonymous authentication: every request gets a session."""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections.abc import Mapping
from typing import Any

import structlog

from scopeauth.auth.metadata import AuthenticationMetaData
from scopeauth.auth.modules.base import AuthenticationModule
from scopeauth.auth.session import Session, User

logger = structlog.get_logger()

SESSION_UUID_KEY = "sessionUUID"
SESSION_ID_KEY = "sessionId"
SESSION_STATE_KEY_PREFIX = "FullyAnonymousSession:"


class AnonymousModule(AuthenticationModule):
    """Grants an ``anonymous`` session to anyone.

    A session uuid supplied in the context is reused, and any values saved
    for it with persist_session() are restored. Without one, a fresh uuid
    is minted.
    """

    def __init__(self) -> None:
        self._persisted: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def persist_session(self, session: Session | None) -> None:
        """Save a session's values so a later request with its uuid gets them back."""
        if session is None or not session.uuid:
            return
        async with self._lock:
            self._persisted[SESSION_STATE_KEY_PREFIX + session.uuid] = {
                "values": copy.deepcopy(session.values),
                "values_for_frontend": copy.deepcopy(session.values_for_frontend),
            }

    async def create_session(
        self,
        metadata: AuthenticationMetaData,
        context: Mapping[str, str],
    ) -> Session:
        user = User(id="anonymous", display_name="Anonymous")
        session_uuid = None
        if context:
            if SESSION_UUID_KEY in context:
                session_uuid = context[SESSION_UUID_KEY]
            elif SESSION_ID_KEY in context:
                session_uuid = context[SESSION_ID_KEY]

        if not session_uuid:
            session_uuid = str(uuid.uuid4())
            return Session(user=user, uuid=session_uuid, id_reference=f"Session:{session_uuid}")

        session = Session(user=user, uuid=session_uuid, id_reference=session_uuid)
        async with self._lock:
            saved = self._persisted.get(SESSION_STATE_KEY_PREFIX + session_uuid)
        if saved is not None:
            session.values = copy.deepcopy(saved["values"])
            session.values_for_frontend = copy.deepcopy(saved["values_for_frontend"])
            logger.debug("Restored anonymous session values", session_uuid=session_uuid)
        return session

    async def is_session_valid(self, metadata: AuthenticationMetaData, session: Session | None) -> bool:
        return session is not None

    async def logout(self, metadata: AuthenticationMetaData, session_uuid: str | None) -> None:
        if session_uuid is None:
            return
        async with self._lock:
            self._persisted.pop(SESSION_STATE_KEY_PREFIX + session_uuid, None)

    def uses_session_cookie(self) -> bool:
        return True
