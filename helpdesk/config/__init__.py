"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_high_priority_minutes: float = Field(
        default=1,
        description="SLA duration for high priority tickets, in minutes",
        gt=0
    )
    sla_policy_path: Optional[Path] = Field(
        default=None,
        description="Optional YAML file overriding the SLA policy"
    )
    sla_scan_interval_seconds: int = Field(
        default=30,
        description="Seconds between SLA scans (0 disables the scheduler)",
        ge=0
    )

    # ========== Notifications ==========
    notification_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for a single notification delivery",
        gt=0,
        le=120
    )
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL receiving SLA notifications"
    )
    notification_webhook_channel: str = Field(
        default="#helpdesk-sla",
        description="Channel name sent along with webhook notifications"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Ticket priority levels."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TicketStatus(str):
    """Ticket status names as stored by the ticket subsystem."""
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    WAITING = "Waiting"
    CLOSED = "Closed"


class SLAState(str):
    """Per-ticket SLA states."""
    ACTIVE = "active"
    BREACHED = "breached"
    NOTIFIED = "notified"
    RESOLVED = "resolved"


class NotificationType(str):
    """Kinds of persisted notifications."""
    SLA_BREACH = "sla_breach"
    SLA_WARNING = "sla_warning"

