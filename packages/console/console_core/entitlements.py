"""Subscription entitlement checks and the hosted checkout upgrade flow."""

from __future__ import annotations

import structlog

from saas_console_shared.schemas.organizations import SessionIdentity

from .errors import ConsoleError
from .platform import PlatformClient

log = structlog.get_logger()


class Entitlements:
    def __init__(self, platform: PlatformClient, price_id: str | None = None):
        self._platform = platform
        self._price_id = price_id

    async def is_entitled(self, session: SessionIdentity | None) -> bool:
        """Global admins are always entitled; everyone else needs an active subscription."""
        if session is None:
            return False
        if session.is_global_admin:
            return True
        entitled = await self._platform.has_active_subscription(session.user_id)
        log.debug("entitlements.checked", user_id=session.user_id, entitled=entitled)
        return entitled

    async def start_checkout(self, session: SessionIdentity) -> str:
        """Create a checkout session and return the URL to send the user to."""
        if not self._price_id:
            raise ConsoleError("No subscription price is configured for upgrades")
        url = await self._platform.create_checkout_session(
            session.user_id, session.email, self._price_id
        )
        log.info("entitlements.checkout_created", user_id=session.user_id)
        return url
