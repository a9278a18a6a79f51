"""
Application Configuration

Central configuration for the AgentPulse telemetry service.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import List
from enum import Enum


class Environment(str, Enum):
    """Deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StorageMode(str, Enum):
    """How telemetry rows are scoped to a caller."""
    LOCAL = "local"    # single user, rows carry user_id
    CLOUD = "cloud"    # multi-tenant, rows carry tenant_id


@dataclass
class Config:
    """Application configuration."""

    # Environment
    env: Environment = Environment.DEVELOPMENT
    debug: bool = True
    mode: StorageMode = StorageMode.CLOUD

    # Application
    app_name: str = "AgentPulse"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=list)

    # Database
    database_url: str = "sqlite:///./agentpulse.db"
    database_echo: bool = False

    # Ingestion
    first_seen_dir: str = ""  # empty = in-memory dedup

    # Query limits
    messages_max_limit: int = 200
    messages_default_limit: int = 50

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        env_str = os.getenv("ENV", "development").lower()
        env = Environment(env_str) if env_str in [e.value for e in Environment] else Environment.DEVELOPMENT

        mode_str = os.getenv("AGENTPULSE_MODE", "cloud").lower()
        mode = StorageMode(mode_str) if mode_str in [m.value for m in StorageMode] else StorageMode.CLOUD

        cors = os.getenv("CORS_ORIGINS", "")

        return cls(
            env=env,
            debug=env == Environment.DEVELOPMENT,
            mode=mode,
            app_name=os.getenv("APP_NAME", "AgentPulse"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=[o.strip() for o in cors.split(",") if o.strip()],
            database_url=os.getenv("DATABASE_URL", "sqlite:///./agentpulse.db"),
            database_echo=os.getenv("DATABASE_ECHO", "false").lower() in ("true", "1", "yes"),
            first_seen_dir=os.getenv("FIRST_SEEN_DIR", ""),
            messages_max_limit=int(os.getenv("MESSAGES_MAX_LIMIT", "200")),
            messages_default_limit=int(os.getenv("MESSAGES_DEFAULT_LIMIT", "50")),
        )


# Global config instance
config = Config.from_env()
