"""
Tenant context resolution.

Decides which organization a signed-in user operates in, with which role and
navigation set, and lets users who belong to several organizations switch.
The resolver is the only writer of the active tenant: dependents receive it
by reference and subscribe to changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine

import structlog

from saas_console_shared.schemas.common import Role
from saas_console_shared.schemas.organizations import (
    Membership,
    Organization,
    SessionIdentity,
    TenantContext,
)

from .errors import AccessDenied, AuthRequired, OrganizationNotFound
from .metrics import MetricsCollector
from .navigation import navigation_for
from .platform import PlatformClient
from .storage import ActiveTenantSlot

log = structlog.get_logger()


TenantChangeHandler = Callable[[TenantContext | None], Coroutine[Any, Any, None]]


class AccessState(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    UNRESOLVED = "unresolved"
    AUTH_REQUIRED = "auth_required"

    @property
    def granted(self) -> bool:
        return self is AccessState.ALLOWED


@dataclass
class OrganizationChoices:
    """What an organization selector shows."""
    organizations: list[Organization] = field(default_factory=list)
    active_organization_id: str | None = None

    @property
    def needs_selection(self) -> bool:
        return self.active_organization_id is None and len(self.organizations) > 1


def _context_for(organization_id: str, role: Role) -> TenantContext:
    return TenantContext(
        organization_id=organization_id, role=role, navigation=navigation_for(role)
    )


class TenantResolver:
    """
    Owns the active ``TenantContext`` for one console process.

    - ``resolve`` runs at session start (and again when the identity changes)
    - ``switch_tenant`` is the explicit user action
    - ``check_access`` gates tenant-scoped content against fresh memberships

    Lookup failures propagate as ``PersistenceError`` and leave the previous
    context in place.
    """

    def __init__(
        self,
        platform: PlatformClient,
        slot: ActiveTenantSlot,
        metrics: MetricsCollector | None = None,
    ):
        self._platform = platform
        self._slot = slot
        self._metrics = metrics
        self._session: SessionIdentity | None = None
        self._context: TenantContext | None = None
        self._memberships: list[Membership] = []
        self._handlers: list[TenantChangeHandler] = []
        self._generation = 0

    @property
    def session(self) -> SessionIdentity | None:
        return self._session

    @property
    def context(self) -> TenantContext | None:
        return self._context

    @property
    def memberships(self) -> list[Membership]:
        return list(self._memberships)

    @property
    def generation(self) -> int:
        """Bumped on every change of context or identity."""
        return self._generation

    def on_change(self, handler: TenantChangeHandler) -> None:
        """Register a handler invoked after every context change."""
        self._handlers.append(handler)

    # --- Resolution ---

    async def resolve(self, session: SessionIdentity) -> TenantContext | None:
        """Pick the tenant for a newly available session."""
        if session.is_global_admin:
            memberships: list[Membership] = []
            context = await self._resolve_global_admin()
        else:
            memberships = await self._platform.list_memberships(session.user_id)
            context = await self._resolve_member(session, memberships)

        identity_changed = self._session != session
        self._session = session
        self._memberships = memberships
        log.info(
            "resolver.resolved",
            user_id=session.user_id,
            organization_id=context.organization_id if context else None,
            role=context.role.value if context else None,
            memberships=len(memberships),
        )
        await self._set_context(context, force_notify=identity_changed)
        return context

    async def _resolve_member(
        self, session: SessionIdentity, memberships: list[Membership]
    ) -> TenantContext | None:
        if not memberships:
            # Provisioning creates a default organization out of band
            log.info("resolver.no_memberships", user_id=session.user_id)
            return None

        if len(memberships) == 1:
            chosen = memberships[0]
        else:
            saved_id, _ = await self._slot.load()
            chosen = next(
                (m for m in memberships if m.organization_id == saved_id),
                memberships[0],
            )
            if chosen.organization_id != saved_id:
                log.info(
                    "resolver.saved_selection_ignored",
                    saved=saved_id,
                    chosen=chosen.organization_id,
                )

        await self._slot.save(chosen.organization_id, chosen.role)
        return _context_for(chosen.organization_id, chosen.role)

    async def _resolve_global_admin(self) -> TenantContext | None:
        saved_id, _ = await self._slot.load()
        organization_id: str | None = None
        if saved_id:
            try:
                await self._platform.get_organization(saved_id)
                organization_id = saved_id
            except OrganizationNotFound:
                log.info("resolver.saved_organization_gone", organization_id=saved_id)

        if organization_id is None:
            organizations = await self._platform.list_organizations()
            if not organizations:
                return None
            organization_id = organizations[0].id

        await self._slot.save(organization_id)
        return _context_for(organization_id, Role.GLOBAL_ADMIN)

    # --- Switching ---

    async def switch_tenant(self, organization_id: str) -> TenantContext:
        """Make ``organization_id`` the active tenant.

        Raises ``AccessDenied`` for non-members (context unchanged) and
        ``OrganizationNotFound`` when a global admin picks a missing one.
        """
        session = self._require_session()

        if session.is_global_admin:
            await self._platform.get_organization(organization_id)
            await self._slot.save(organization_id)
            context = _context_for(organization_id, Role.GLOBAL_ADMIN)
        else:
            memberships = await self._platform.list_memberships(session.user_id)
            membership = next(
                (m for m in memberships if m.organization_id == organization_id), None
            )
            if membership is None:
                log.warning(
                    "resolver.switch_denied",
                    user_id=session.user_id,
                    organization_id=organization_id,
                )
                raise AccessDenied(organization_id)
            await self._slot.save(organization_id, membership.role)
            self._memberships = memberships
            context = _context_for(organization_id, membership.role)

        if self._metrics:
            self._metrics.inc("tenant_switches_total")
        log.info(
            "resolver.switched",
            user_id=session.user_id,
            organization_id=organization_id,
            role=context.role.value,
        )
        await self._set_context(context)
        return context

    # --- Gating ---

    async def check_access(self) -> AccessState:
        """Evaluate whether tenant-scoped content may be shown right now.

        Re-reads the persisted organization id and the membership set on every
        call.
        """
        session = self._session
        if session is None:
            return AccessState.AUTH_REQUIRED
        if session.is_global_admin:
            return AccessState.ALLOWED

        saved_id, _ = await self._slot.load()
        if not saved_id:
            return AccessState.UNRESOLVED

        memberships = await self._platform.list_memberships(session.user_id)
        self._memberships = memberships
        if any(m.organization_id == saved_id for m in memberships):
            return AccessState.ALLOWED
        log.warning("resolver.access_denied", user_id=session.user_id, organization_id=saved_id)
        return AccessState.DENIED

    async def organization_choices(self) -> OrganizationChoices:
        session = self._require_session()
        if session.is_global_admin:
            organizations = await self._platform.list_organizations()
        else:
            organizations = await self._platform.list_member_organizations(session.user_id)
        organizations.sort(key=lambda org: org.name.lower())
        return OrganizationChoices(
            organizations=organizations,
            active_organization_id=self._context.organization_id if self._context else None,
        )

    async def sign_out(self) -> None:
        """Forget the session and context. The persisted slot is left as is."""
        if self._session is None:
            return
        log.info("resolver.cleared", user_id=self._session.user_id)
        self._session = None
        self._memberships = []
        await self._set_context(None, force_notify=True)

    # --- Internals ---

    def _require_session(self) -> SessionIdentity:
        if self._session is None:
            raise AuthRequired("Sign in to choose an organization")
        return self._session

    async def _set_context(
        self, context: TenantContext | None, *, force_notify: bool = False
    ) -> None:
        if context == self._context and not force_notify:
            return
        self._context = context
        self._generation += 1

        for handler in self._handlers:
            try:
                await handler(context)
            except Exception:
                log.exception(
                    "resolver.handler_error",
                    organization_id=context.organization_id if context else None,
                )
