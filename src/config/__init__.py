"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator
from functools import lru_cache
from pathlib import Path
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="servicedesk-escalation", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/servicedesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Escalation ==========
    escalation_config_path: Path = Field(
        default=Path("escalation_config.yaml"),
        description="Path to escalation policy YAML file"
    )
    escalation_interval_minutes: int = Field(
        default=5,
        description="Minutes between escalation sweeps (0 disables the scheduler)",
        ge=0
    )
    business_timezone: str = Field(
        default="Asia/Kolkata",
        description="Time zone of the working window and the sweep schedule"
    )
    work_start_hour: int = Field(default=7, description="Working window start hour", ge=0, le=23)
    work_end_hour: int = Field(default=18, description="Working window end hour", ge=1, le=24)
    sla_minutes_per_level: int = Field(
        default=120,
        description="Working minutes allowed at each escalation level",
        ge=1
    )

    # ========== Attachments ==========
    upload_dir: Path = Field(default=Path("uploads"), description="Local attachment storage root")
    upload_base_url: str = Field(default="/uploads", description="URL prefix for stored attachments")
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum attachment size in bytes",
        ge=1
    )
    allowed_upload_types: List[str] = Field(
        default=[
            "application/pdf",
            "image/jpeg",
            "image/jpg",
            "image/webp",
            "image/png",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        ],
        description="Accepted attachment content types"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
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

    @model_validator(mode="after")
    def validate_working_window(self) -> "Settings":
        if self.work_start_hour >= self.work_end_hour:
            raise ValueError("work_start_hour must be before work_end_hour")
        return self


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketCategory(str):
    """Service request categories an agent can raise."""
    PAYMENT_NOT_RECEIVED = "Payment Not Received"
    HALF_PAYMENT_RECEIVED = "Half Payment Received"
    COMMISSION_ISSUE = "Commission Issue"
    DISBURSEMENT_DELAY = "Disbursement Delay"
    OTHER = "Other"


class TicketStatus(str):
    """Ticket workflow statuses."""
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    ESCALATED_TO_REGIONAL_MANAGER = "Escalated to Regional Manager"
    ESCALATED_TO_ADMIN = "Escalated to Admin"


class TicketPriority(str):
    """Ticket priority levels."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class AssignedRole(str):
    """Roles a ticket can be assigned to."""
    RELATIONSHIP_MANAGER = "relationship_manager"
    FRANCHISE = "franchise"
    REGIONAL_MANAGER = "regional_manager"
    SUPER_ADMIN = "super_admin"


class NotificationType(str):
    """Notification type tags emitted by the ticket workflow."""
    TICKET_ASSIGNED = "ticket_assigned"
    TICKET_ESCALATED = "ticket_escalated"
    TICKET_REASSIGNED = "ticket_reassigned"
    TICKET_RESOLVED = "ticket_resolved"


class UserStatus(str):
    """Account statuses."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


# Escalation levels: 1 = direct supervisor, 2 = regional manager, 3 = admin
MIN_ESCALATION_LEVEL = 1
MAX_ESCALATION_LEVEL = 3


# ========== Lists for validation ==========

VALID_CATEGORIES = [
    TicketCategory.PAYMENT_NOT_RECEIVED, TicketCategory.HALF_PAYMENT_RECEIVED,
    TicketCategory.COMMISSION_ISSUE, TicketCategory.DISBURSEMENT_DELAY,
    TicketCategory.OTHER
]
VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED,
    TicketStatus.ESCALATED_TO_REGIONAL_MANAGER, TicketStatus.ESCALATED_TO_ADMIN
]
# Statuses settable through a plain update; resolution has its own operation
UPDATABLE_STATUSES = [s for s in VALID_STATUSES if s != TicketStatus.RESOLVED]
VALID_PRIORITIES = [TicketPriority.LOW, TicketPriority.MEDIUM, TicketPriority.HIGH]
VALID_ASSIGNED_ROLES = [
    AssignedRole.RELATIONSHIP_MANAGER, AssignedRole.FRANCHISE,
    AssignedRole.REGIONAL_MANAGER, AssignedRole.SUPER_ADMIN
]
VALID_NOTIFICATION_TYPES = [
    NotificationType.TICKET_ASSIGNED, NotificationType.TICKET_ESCALATED,
    NotificationType.TICKET_REASSIGNED, NotificationType.TICKET_RESOLVED
]
