"""
Read-only branding and link directory views.

Row visibility is enforced by the platform; the tenant filter here narrows the
directory to what the active organization should see.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from saas_console_shared.schemas.common import LinkScope
from saas_console_shared.schemas.directory import DirectoryLink, SiteSettings, TopBarLink

from .platform import PlatformClient
from .tenancy import TenantResolver

log = structlog.get_logger()

SCOPE_FILTERS = ("all",) + tuple(scope.value for scope in LinkScope)


@dataclass
class TopBar:
    navigation: list[TopBarLink] = field(default_factory=list)
    social: list[TopBarLink] = field(default_factory=list)


@dataclass
class Branding:
    settings: SiteSettings | None
    top_bar: TopBar

    def logo(self, theme: str = "light") -> str | None:
        if self.settings is None:
            return None
        return self.settings.logo_for(theme)


def split_top_bar(links: list[TopBarLink]) -> TopBar:
    ordered = sorted(links, key=lambda link: link.order)
    return TopBar(
        navigation=[link for link in ordered if not link.is_social],
        social=[link for link in ordered if link.is_social],
    )


def filter_links(
    links: list[DirectoryLink],
    *,
    scope: str = "all",
    organization_id: str | None = None,
    is_global_admin: bool = False,
) -> list[DirectoryLink]:
    """Apply the tenant and scope filters, keeping the input order."""
    if scope not in SCOPE_FILTERS:
        raise ValueError(f"Unknown link scope filter: {scope}")

    visible = []
    for link in links:
        if not is_global_admin and link.scope is not LinkScope.GLOBAL:
            if organization_id is None or link.organization_id != organization_id:
                continue
        if scope != "all" and link.scope.value != scope:
            continue
        visible.append(link)
    return visible


class Directory:
    def __init__(self, platform: PlatformClient, resolver: TenantResolver):
        self._platform = platform
        self._resolver = resolver

    async def branding(self) -> Branding:
        settings = await self._platform.get_site_settings()
        top_bar = split_top_bar(await self._platform.list_topbar_links())
        return Branding(settings=settings, top_bar=top_bar)

    async def links(self, scope: str = "all") -> list[DirectoryLink]:
        """Links visible in the active tenant, newest first."""
        session = self._resolver.session
        context = self._resolver.context
        links = await self._platform.list_links()
        visible = filter_links(
            links,
            scope=scope,
            organization_id=context.organization_id if context else None,
            is_global_admin=bool(session and session.is_global_admin),
        )
        log.debug("directory.links", scope=scope, total=len(links), visible=len(visible))
        return visible
