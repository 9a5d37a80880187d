"""Error kinds surfaced at component boundaries.

Transport and storage exceptions are translated into one of these before they
leave the component that caught them.
"""

from __future__ import annotations


class ConsoleError(Exception):
    """Base exception for all console errors."""

    retryable = False

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthRequired(ConsoleError):
    """No authenticated session; defer to the identity provider's login flow."""


class AccessDenied(ConsoleError):
    """The user holds or requested a tenant they have no membership in."""

    def __init__(self, organization_id: str | None) -> None:
        super().__init__(
            "You are not part of this organization. "
            "Please contact the administrator for access.",
            details={"organization_id": organization_id},
        )


class OrganizationNotFound(ConsoleError):
    def __init__(self, organization_id: str) -> None:
        super().__init__(
            f"Organization not found: {organization_id}",
            details={"organization_id": organization_id},
        )


class ConfigMissing(ConsoleError):
    """The organization has no (valid) AI configuration."""


class ConfigDisabled(ConsoleError):
    """AI chat is turned off for the organization."""


class EntitlementRequired(ConsoleError):
    """Chat submission needs an active subscription."""


class TransportError(ConsoleError):
    """Network failure or non-success response from the completion endpoint."""

    retryable = True


class MalformedStreamFragment(ConsoleError):
    """A single stream record could not be parsed. Never aborts a stream."""


class PersistenceError(ConsoleError):
    """A platform read or write failed."""

    retryable = True
