"""
Configuration loading and validation.

Loads console configuration from a YAML file. Secrets (the platform anon key,
the sign-in password) are resolved from environment variables and never
stored in config files.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class PlatformConfig(BaseModel):
    url: str = "http://localhost:54321"
    anon_key_env: str = "CONSOLE_ANON_KEY"
    verify_tls: bool = True
    request_timeout_seconds: int = 30
    max_retries: int = 3

    @property
    def anon_key(self) -> str | None:
        return os.environ.get(self.anon_key_env)


class AuthConfig(BaseModel):
    email: Optional[str] = None
    password_env: str = "CONSOLE_PASSWORD"

    @property
    def password(self) -> str | None:
        return os.environ.get(self.password_env)


class StorageConfig(BaseModel):
    db_path: str = "./data/console_storage.db"


class ChatConfig(BaseModel):
    # None means the read loop waits on the upstream indefinitely
    stream_timeout_seconds: Optional[float] = None
    connect_timeout_seconds: float = 10.0
    verify_tls: bool = True


class BillingConfig(BaseModel):
    price_id: Optional[str] = None


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "text"


class ConsoleConfig(BaseModel):
    platform: PlatformConfig = Field(default_factory=PlatformConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path) -> ConsoleConfig:
    """Load and validate console configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return ConsoleConfig.model_validate(raw)
