"""Tests for subscription entitlements and checkout."""

import pytest

from console_core.entitlements import Entitlements
from console_core.errors import ConsoleError

from .fakes import ADMIN, ALICE


async def test_no_session_is_not_entitled(platform):
    assert not await Entitlements(platform).is_entitled(None)


async def test_subscription_decides(platform):
    entitlements = Entitlements(platform)
    assert not await entitlements.is_entitled(ALICE)

    platform.subscribers.add(ALICE.user_id)
    assert await entitlements.is_entitled(ALICE)


async def test_global_admin_bypasses_subscription(platform):
    assert await Entitlements(platform).is_entitled(ADMIN)
    assert platform.calls == []


async def test_checkout_uses_configured_price(platform):
    url = await Entitlements(platform, price_id="price_pro").start_checkout(ALICE)

    assert url == "https://checkout.example.com/price_pro"
    assert platform.checkouts == [(ALICE.user_id, ALICE.email, "price_pro")]


async def test_checkout_without_price(platform):
    with pytest.raises(ConsoleError):
        await Entitlements(platform).start_checkout(ALICE)
    assert platform.checkouts == []
