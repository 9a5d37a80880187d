"""AI chat schemas: per-organization endpoint configuration and transcript messages."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from .common import MessageRole

DEFAULT_DISCLAIMER = "AI can make mistakes. Consider checking important information."


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up.

    An approximation for display only, not a billing-accurate count.
    """
    return math.ceil(len(text) / 4)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class AIEndpointConfig(BaseModel):
    """One organization's completion endpoint settings, validated at load time."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    endpoint_url: HttpUrl
    api_key: str = Field(min_length=1)
    model: str = Field(min_length=1)
    max_output_tokens: int = Field(default=4096, ge=1)
    max_total_tokens: Optional[int] = Field(default=None, ge=1)
    disclaimer_message: str = DEFAULT_DISCLAIMER
    enabled: bool = True


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------

class ChatMessage(BaseModel):
    """A persisted transcript entry; ``id`` and ``created_at`` are server-assigned."""

    model_config = ConfigDict(extra="ignore")

    id: str
    role: MessageRole
    content: str
    created_at: datetime
    tokens: Optional[int] = None

    @property
    def display_tokens(self) -> int:
        if self.tokens is not None:
            return self.tokens
        return estimate_tokens(self.content)

    def as_prompt(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class NewChatMessage(BaseModel):
    """Insert payload for ``chat_messages``."""
    organization_id: str
    role: MessageRole
    content: str
    user_id: str
