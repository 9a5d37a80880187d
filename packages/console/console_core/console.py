"""
Console orchestrator.

Wires the platform client, device storage, tenant resolver and chat session
for one signed-in user, and owns their lifecycle.
"""

from __future__ import annotations

import structlog

from saas_console_shared.schemas.organizations import SessionIdentity, TenantContext

from .chat import ChatSession
from .completion import CompletionClient
from .config import ConsoleConfig
from .directory import Directory
from .entitlements import Entitlements
from .errors import AuthRequired
from .metrics import MetricsCollector
from .platform import PlatformClient
from .storage import ActiveTenantSlot, ClientStorage
from .tenancy import TenantResolver

log = structlog.get_logger()


class ConsoleApp:
    """
    One console session: sign in, resolve the tenant, then serve chat,
    organization switching, upgrades and the link directory.
    """

    def __init__(
        self,
        config: ConsoleConfig,
        *,
        platform: PlatformClient | None = None,
        completions: CompletionClient | None = None,
    ):
        self._config = config
        self.metrics = MetricsCollector()
        self._storage = ClientStorage(config.storage.db_path)
        self.platform = platform or PlatformClient(
            url=config.platform.url,
            anon_key=config.platform.anon_key or "",
            verify_tls=config.platform.verify_tls,
            request_timeout=config.platform.request_timeout_seconds,
            max_retries=config.platform.max_retries,
            metrics=self.metrics,
        )
        self._completions = completions or CompletionClient(
            read_timeout=config.chat.stream_timeout_seconds,
            connect_timeout=config.chat.connect_timeout_seconds,
            verify_tls=config.chat.verify_tls,
            metrics=self.metrics,
        )
        self.resolver = TenantResolver(
            self.platform, ActiveTenantSlot(self._storage), metrics=self.metrics
        )
        self.entitlements = Entitlements(self.platform, price_id=config.billing.price_id)
        self.chat = ChatSession(
            self.resolver,
            self.platform,
            self._completions,
            self.entitlements,
            metrics=self.metrics,
        )
        self.directory = Directory(self.platform, self.resolver)
        self._running = False

    @property
    def session(self) -> SessionIdentity | None:
        return self.resolver.session

    @property
    def context(self) -> TenantContext | None:
        return self.resolver.context

    async def start(self) -> TenantContext | None:
        """Open connections, sign in and resolve the active tenant."""
        log.info("console.starting", platform=self._config.platform.url)

        await self._storage.open()
        await self.platform.open()
        await self._completions.open()
        self._running = True

        email = self._config.auth.email
        password = self._config.auth.password
        if not self.platform.access_token:
            if not email or not password:
                raise AuthRequired(
                    "No credentials configured",
                    details={"password_env": self._config.auth.password_env},
                )
            await self.platform.sign_in_with_password(email, password)

        session = await self.platform.get_current_session()
        if session is None:
            raise AuthRequired("Sign-in did not produce a session")

        context = await self.resolver.resolve(session)
        log.info(
            "console.started",
            user_id=session.user_id,
            organization_id=context.organization_id if context else None,
        )
        return context

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        log.info("console.stopping")

        await self.chat.cancel_turn()
        await self._completions.close()
        await self.platform.close()
        await self._storage.close()

        log.info("console.stopped", metrics=self.metrics.to_dict())

    async def upgrade(self) -> str:
        """Start a checkout and return the URL to open."""
        session = self.resolver.session
        if session is None:
            raise AuthRequired("Sign in to upgrade")
        return await self.entitlements.start_checkout(session)

    async def sign_out(self) -> None:
        await self.chat.cancel_turn()
        await self.platform.sign_out()
        await self.resolver.sign_out()

    async def __aenter__(self) -> "ConsoleApp":
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
