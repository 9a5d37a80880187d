"""Tests for device-local storage."""

import aiosqlite
import pytest

from saas_console_shared.schemas.common import Role

from console_core.errors import PersistenceError
from console_core.storage import (
    ACTIVE_ORGANIZATION_KEY,
    ACTIVE_ROLE_KEY,
    ActiveTenantSlot,
    ClientStorage,
)


async def test_key_value_crud(storage: ClientStorage):
    assert await storage.get("theme") is None

    await storage.set("theme", "dark")
    assert await storage.get("theme") == "dark"

    await storage.set("theme", "light")
    assert await storage.get("theme") == "light"

    await storage.delete("theme")
    assert await storage.get("theme") is None


async def test_values_survive_reopen(tmp_path):
    path = str(tmp_path / "nested" / "storage.db")
    first = ClientStorage(path)
    await first.open()
    await first.set(ACTIVE_ORGANIZATION_KEY, "org_a")
    await first.close()

    second = ClientStorage(path)
    await second.open()
    try:
        assert await second.get(ACTIVE_ORGANIZATION_KEY) == "org_a"
    finally:
        await second.close()


async def test_slot_round_trip(slot: ActiveTenantSlot):
    assert await slot.load() == (None, None)

    await slot.save("org_a", Role.ORGANIZATION_ADMIN)
    assert await slot.load() == ("org_a", Role.ORGANIZATION_ADMIN)

    # Saving without a role clears the stale one
    await slot.save("org_b")
    assert await slot.load() == ("org_b", None)


async def test_slot_ignores_unknown_role(storage: ClientStorage, slot: ActiveTenantSlot):
    await storage.set(ACTIVE_ORGANIZATION_KEY, "org_a")
    await storage.set(ACTIVE_ROLE_KEY, "owner")
    assert await slot.load() == ("org_a", None)


async def test_slot_save_is_atomic(tmp_path, storage: ClientStorage, slot: ActiveTenantSlot):
    await slot.save("org_a")

    # Reject the role row so the second write of the pair fails
    async with aiosqlite.connect(str(tmp_path / "client_storage.db")) as db:
        await db.execute(
            f"""CREATE TRIGGER reject_role BEFORE INSERT ON client_storage
                WHEN NEW.key = '{ACTIVE_ROLE_KEY}'
                BEGIN SELECT RAISE(ABORT, 'role rejected'); END"""
        )
        await db.commit()

    with pytest.raises(PersistenceError):
        await slot.save("org_b", Role.TEAM_ADMIN)

    assert await slot.load() == ("org_a", None)
