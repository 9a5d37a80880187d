"""
Organization and membership schemas.

Covers: session identity, organizations, memberships and the resolved
tenant context with its navigation set.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common import MEMBERSHIP_ROLES, Role


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class SessionIdentity(BaseModel):
    """The authenticated user. Immutable for the lifetime of a session."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    is_global_admin: bool = False


# ---------------------------------------------------------------------------
# Organizations & memberships
# ---------------------------------------------------------------------------

class Organization(BaseModel):
    id: str
    name: str
    slug: str
    logo_url: Optional[str] = None


class Membership(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    organization_id: str
    role: Role = Role.USER

    @field_validator("role")
    @classmethod
    def _membership_role(cls, value: Role) -> Role:
        if value not in MEMBERSHIP_ROLES:
            raise ValueError(f"{value.value} cannot be granted through a membership")
        return value


# ---------------------------------------------------------------------------
# Tenant context
# ---------------------------------------------------------------------------

class NavItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    href: str


class TenantContext(BaseModel):
    """The active (organization, role) pair and what it unlocks."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    role: Role
    navigation: tuple[NavItem, ...] = Field(default_factory=tuple)
