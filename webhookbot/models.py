"""Shared data models for webhookbot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class AuditEventType(str, Enum):
    WEBHOOK_CREATED = "webhook_created"
    WEBHOOK_UPDATED = "webhook_updated"
    WEBHOOK_REMOVED = "webhook_removed"
    WEBHOOK_DISPATCHED = "webhook_dispatched"
    DISPATCH_FAILED = "dispatch_failed"
    TOKEN_REJECTED = "token_rejected"
    RATE_LIMITED = "rate_limited"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# --- Registry Models ---


class Webhook(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    conversation_id: str
    name: str
    template: str = ""
    created_at: str = Field(default_factory=_now_iso)

    @property
    def has_template(self) -> bool:
        return bool(self.template)


class WebhookSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    has_template: bool


# --- Chat Models ---


@dataclass(frozen=True)
class ChatCommand:
    """A message received from the chat service that may contain a bot command."""

    conversation_id: str
    sender: str
    text: str


@dataclass(frozen=True)
class CommandAdvertisement:
    name: str  # e.g. "webhook create"
    description: str
    usage: str = ""
    extended: str = ""


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    user_id: str | None = None
    conversation_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "blocked"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
