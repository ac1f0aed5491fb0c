"""Record storage for CSRF state and user-session records.

Records are plain dicts grouped in named tables. Two tables are used by the
OAuth2 module (names configurable on OAuth2MetaData):

    oauth2State:  {"state", "redirectUri", "createDate"}
    userSession:  {"uuid", "userId", "accessToken", "createDate", "modifyDate"}

JsonRecordStore file format (records.json):
    {
        "tables": {
            "userSession": [
                {"uuid": "...", "userId": "...", "accessToken": "...", ...}
            ]
        }
    }

Every call takes the acting session as ``actor`` so backends that enforce
permissions can check it. The built-in stores accept any actor.
"""

from __future__ import annotations

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from scopeauth.auth.session import Session

Record = dict[str, Any]


def _utc_now() -> str:
    """Return current UTC time as an ISO 8601 string."""
    return datetime.now(UTC).isoformat()


def _matches(record: Record, where: dict[str, Any] | None) -> bool:
    if not where:
        return True
    return all(record.get(key) == value for key, value in where.items())


def _stamp(record: Record) -> Record:
    stamped = copy.deepcopy(record)
    now = _utc_now()
    stamped.setdefault("createDate", now)
    stamped.setdefault("modifyDate", now)
    return stamped


class RecordStore(ABC):
    """Async table-of-dicts storage."""

    @abstractmethod
    async def insert(self, table: str, record: Record, *, actor: Session | None = None) -> Record:
        """Insert a record, stamping createDate/modifyDate when missing.

        Returns:
            The stored record
        """

    @abstractmethod
    async def query(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        *,
        actor: Session | None = None,
    ) -> list[Record]:
        """Return records whose fields equal every ``where`` value."""

    @abstractmethod
    async def delete(self, table: str, where: dict[str, Any], *, actor: Session | None = None) -> int:
        """Delete matching records and return how many were removed."""

    async def get(
        self,
        table: str,
        where: dict[str, Any],
        *,
        actor: Session | None = None,
    ) -> Record | None:
        """Return the first matching record, or None."""
        records = await self.query(table, where, actor=actor)
        return records[0] if records else None


class MemoryRecordStore(RecordStore):
    """In-memory record store. Records are copied in and out."""

    def __init__(self) -> None:
        self._tables: dict[str, list[Record]] = {}
        self._lock = asyncio.Lock()

    async def insert(self, table: str, record: Record, *, actor: Session | None = None) -> Record:
        stored = _stamp(record)
        async with self._lock:
            self._tables.setdefault(table, []).append(stored)
        return copy.deepcopy(stored)

    async def query(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        *,
        actor: Session | None = None,
    ) -> list[Record]:
        async with self._lock:
            return [copy.deepcopy(r) for r in self._tables.get(table, []) if _matches(r, where)]

    async def delete(self, table: str, where: dict[str, Any], *, actor: Session | None = None) -> int:
        async with self._lock:
            records = self._tables.get(table, [])
            kept = [r for r in records if not _matches(r, where)]
            self._tables[table] = kept
            return len(records) - len(kept)


class JsonRecordStore(RecordStore):
    """JSON file-based record store.

    Thread-safe via asyncio locks. Suitable for self-hosted deployments
    with moderate session counts; the whole file is rewritten on each change.
    """

    def __init__(self, storage_path: str | Path = "records.json") -> None:
        """Initialize record store.

        Args:
            storage_path: Path to the JSON storage file.
        """
        self.storage_path = Path(storage_path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, list[Record]] | None = None

    async def _load(self) -> dict[str, list[Record]]:
        """Load tables from storage file."""
        if self._cache is not None:
            return self._cache

        if not self.storage_path.exists():
            self._cache = {}
            return self._cache

        try:
            content = await asyncio.to_thread(self.storage_path.read_text)
            data = json.loads(content)
            tables = data.get("tables", {})
            self._cache = {name: list(records) for name, records in tables.items()}
        except (json.JSONDecodeError, AttributeError, TypeError):
            self._cache = {}

        return self._cache

    async def _save(self, tables: dict[str, list[Record]]) -> None:
        """Save tables to storage file."""
        content = json.dumps({"tables": tables}, indent=2)
        await asyncio.to_thread(self.storage_path.write_text, content)
        self._cache = tables

    async def insert(self, table: str, record: Record, *, actor: Session | None = None) -> Record:
        stored = _stamp(record)
        async with self._lock:
            tables = await self._load()
            tables.setdefault(table, []).append(stored)
            await self._save(tables)
        return copy.deepcopy(stored)

    async def query(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        *,
        actor: Session | None = None,
    ) -> list[Record]:
        async with self._lock:
            tables = await self._load()
            return [copy.deepcopy(r) for r in tables.get(table, []) if _matches(r, where)]

    async def delete(self, table: str, where: dict[str, Any], *, actor: Session | None = None) -> int:
        async with self._lock:
            tables = await self._load()
            records = tables.get(table, [])
            kept = [r for r in records if not _matches(r, where)]
            removed = len(records) - len(kept)
            if removed:
                tables[table] = kept
                await self._save(tables)
            return removed

    def invalidate_cache(self) -> None:
        """Invalidate the in-memory cache, forcing reload from disk."""
        self._cache = None
