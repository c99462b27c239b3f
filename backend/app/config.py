"""Chat service configuration.

Loads settings from two YAML files:
  * chat.settings.yaml: non-secret configuration
  * chat.secrets.yaml: secrets (never committed)

Both paths can be overridden with the ``CHAT_SETTINGS_FILE`` and
``CHAT_SECRETS_FILE`` environment variables. A missing file is not an
error; every field has a default.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path(os.getenv("CHAT_SETTINGS_FILE", "chat.settings.yaml"))
SECRETS_FILE  = Path(os.getenv("CHAT_SECRETS_FILE", "chat.secrets.yaml"))


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 8000
    reload:          bool = False
    log_level:       str  = "info"
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class AuthSettings(BaseModel):
    """How access tokens are carried and how long they live."""
    cookie_name:                 str  = "accessToken"
    token_query_param:           str  = "token"
    access_token_expire_minutes: int  = 60 * 24
    # Enables POST /api/v1/users/token/{user_id}. Never turn on in production.
    allow_dev_tokens:            bool = False

    @field_validator("access_token_expire_minutes")
    @classmethod
    def _positive_expiry(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("access_token_expire_minutes must be positive")
        return v


class RealtimeSettings(BaseModel):
    """Live delivery knobs for the WebSocket layer."""
    # Events queued per connection before new ones are dropped.
    outbox_size:                int  = 256
    # Reject joinChat for chats the user does not participate in.
    verify_chat_membership:     bool = True
    # 1008 = Policy Violation
    close_code_unauthenticated: int  = 1008

    @field_validator("outbox_size")
    @classmethod
    def _positive_outbox(cls, v: int) -> int:
        if v < 1:
            raise ValueError("outbox_size must be at least 1")
        return v


class StorageSettings(BaseModel):
    db_path: str = "chat.duckdb"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    storage:  StorageSettings  = Field(default_factory=StorageSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_data = _load_yaml(settings_path or SETTINGS_FILE)
    secrets_data  = _load_yaml(secrets_path or SECRETS_FILE)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, db=%s, verify_chat_membership=%s)",
        config.server.host,
        config.server.port,
        config.storage.db_path,
        config.realtime.verify_chat_membership,
    )
    if config.secrets.jwt.secret_key == JWTSecrets().secret_key:
        logger.warning("JWT secret is the built-in default; set jwt.secret_key in %s", secrets_path or SECRETS_FILE)
    return config


@lru_cache
def get_config() -> AppConfig:
    """Process-wide configuration, parsed once."""
    return load_config()
