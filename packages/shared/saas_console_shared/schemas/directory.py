"""Site branding, top bar and link directory schemas (read-only views)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .common import LinkScope


class SiteSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    site_name: str
    logo_url: Optional[str] = None
    dark_logo_url: Optional[str] = None
    primary_color: str = "#4f46e5"
    secondary_color: str = "#6366f1"

    def logo_for(self, theme: str) -> Optional[str]:
        if theme == "dark":
            return self.dark_logo_url
        return self.logo_url


class TopBarLink(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    url: str
    icon_name: str = ""
    order: int = 0
    is_social: bool = False


class DirectoryLink(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    url: str
    description: Optional[str] = None
    logo_url: Optional[str] = None
    scope: LinkScope = LinkScope.GLOBAL
    organization_id: Optional[str] = None
    team_id: Optional[str] = None
    created_at: Optional[datetime] = None
