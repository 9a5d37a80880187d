"""
Durable device-local storage.

A SQLite key/value table that survives restarts of the console on the same
device. It is not synchronized across devices and is not cleared on sign-out.
"""

from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone

import aiosqlite
import structlog

from saas_console_shared.schemas.common import Role

from .errors import PersistenceError

log = structlog.get_logger()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS client_storage (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

ACTIVE_ORGANIZATION_KEY = "current_organization_id"
ACTIVE_ROLE_KEY = "current_organization_role"


class ClientStorage:
    """Async SQLite key/value store."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def get(self, key: str) -> str | None:
        assert self._db
        try:
            cursor = await self._db.execute(
                "SELECT value FROM client_storage WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to read {key}", details={"key": key}) from exc
        return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        await self.update({key: value})

    async def update(self, values: dict[str, str | None]) -> None:
        """Write several keys in one transaction; a None value deletes the key."""
        assert self._db
        now = datetime.now(timezone.utc).isoformat()
        try:
            for key, value in values.items():
                if value is None:
                    await self._db.execute("DELETE FROM client_storage WHERE key = ?", (key,))
                else:
                    await self._db.execute(
                        """INSERT INTO client_storage (key, value, updated_at)
                           VALUES (?, ?, ?)
                           ON CONFLICT(key) DO UPDATE SET value=?, updated_at=?""",
                        (key, value, now, value, now),
                    )
            await self._db.commit()
        except sqlite3.Error as exc:
            await self._db.rollback()
            raise PersistenceError(
                "Failed to write " + ", ".join(values), details={"keys": list(values)}
            ) from exc

    async def delete(self, key: str) -> None:
        await self.update({key: None})


class ActiveTenantSlot:
    """The one place the active organization id (and role) is read and written.

    Provisioning and onboarding flows must write through this class too; the
    last write wins.
    """

    def __init__(self, storage: ClientStorage):
        self._storage = storage

    async def load(self) -> tuple[str | None, Role | None]:
        organization_id = await self._storage.get(ACTIVE_ORGANIZATION_KEY)
        raw_role = await self._storage.get(ACTIVE_ROLE_KEY)
        try:
            role = Role(raw_role) if raw_role else None
        except ValueError:
            log.warning("storage.unknown_role", role=raw_role)
            role = None
        return organization_id, role

    async def save(self, organization_id: str, role: Role | None = None) -> None:
        await self._storage.update({
            ACTIVE_ORGANIZATION_KEY: organization_id,
            ACTIVE_ROLE_KEY: role.value if role is not None else None,
        })
