from enum import Enum


class Role(str, Enum):
    GLOBAL_ADMIN = "global_admin"
    ORGANIZATION_ADMIN = "organization_admin"
    TEAM_ADMIN = "team_admin"
    USER = "user"


# Roles a membership row may carry; global admin is a profile flag, not a membership
MEMBERSHIP_ROLES: frozenset[Role] = frozenset(
    {Role.ORGANIZATION_ADMIN, Role.TEAM_ADMIN, Role.USER}
)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class LinkScope(str, Enum):
    GLOBAL = "global"
    ORGANIZATION = "organization"
    TEAM = "team"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
