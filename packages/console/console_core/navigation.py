"""Role-based navigation sets."""

from __future__ import annotations

from saas_console_shared.schemas.common import Role
from saas_console_shared.schemas.organizations import NavItem

USER_NAVIGATION = (
    NavItem(name="Dashboard", href="/dashboard"),
    NavItem(name="Links", href="/links"),
    NavItem(name="AI Chat", href="/chat"),
)

TEAM_ADMIN_NAVIGATION = USER_NAVIGATION + (
    NavItem(name="Teams", href="/user-teams"),
)

ORGANIZATION_ADMIN_NAVIGATION = USER_NAVIGATION + (
    NavItem(name="Organizations", href="/user-organization"),
    NavItem(name="Teams", href="/user-teams"),
)

ADMIN_NAVIGATION = (
    NavItem(name="Admin Dashboard", href="/admin/dashboard"),
    NavItem(name="Organizations", href="/organizations"),
    NavItem(name="Teams", href="/teams"),
    NavItem(name="Links", href="/admin/links"),
    NavItem(name="Top Bar", href="/admin/topbar"),
    NavItem(name="User Management", href="/profiles"),
    NavItem(name="Apps", href="/admin/apps"),
    NavItem(name="Settings", href="/settings"),
)

_ROLE_NAVIGATION: dict[Role, tuple[NavItem, ...]] = {
    Role.ORGANIZATION_ADMIN: ORGANIZATION_ADMIN_NAVIGATION,
    Role.TEAM_ADMIN: TEAM_ADMIN_NAVIGATION,
    Role.USER: USER_NAVIGATION,
    # Global admins keep the regular section and get the admin section after it
    Role.GLOBAL_ADMIN: USER_NAVIGATION + ADMIN_NAVIGATION,
}


def navigation_for(role: Role) -> tuple[NavItem, ...]:
    return _ROLE_NAVIGATION[role]
