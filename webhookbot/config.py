"""Runtime configuration for the webhook bot."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Optional "!" or "/" marker, then a name the Bot API accepts for a command
_COMMAND_PREFIX = re.compile(r"[!/]?[a-z0-9_]{1,32}")


class Settings(BaseModel):
    """Validated process configuration.

    ``dsn`` and ``http_prefix`` are required: without a store there is no
    registry, and without a prefix no callback URL can be handed out.
    """

    model_config = ConfigDict(frozen=True)

    dsn: str
    http_prefix: str
    http_host: str = "0.0.0.0"
    http_port: int = Field(default=8080, ge=1, le=65535)
    bot_token: str = ""
    command_prefix: str = "!webhook"
    announcement: str | None = None
    err_report_conv: str | None = None
    audit_log_path: str | None = None
    rate_limit: int = Field(default=60, ge=1)
    rate_window_seconds: int = Field(default=60, ge=1)

    @field_validator("dsn")
    @classmethod
    def _dsn_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must specify a database DSN")
        return value

    @field_validator("http_prefix")
    @classmethod
    def _prefix_is_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("http prefix must be an absolute http(s) URL")
        return value.rstrip("/")

    @field_validator("command_prefix")
    @classmethod
    def _prefix_is_command_name(cls, value: str) -> str:
        if not _COMMAND_PREFIX.fullmatch(value):
            raise ValueError(
                "command prefix must be 1-32 lowercase letters, digits or underscores, "
                "optionally after ! or /"
            )
        return value

    @property
    def route_path(self) -> str:
        """Path component of ``http_prefix`` under which tokens are served."""
        return urlparse(self.http_prefix).path.rstrip("/")

    def callback_url(self, token: str) -> str:
        return f"{self.http_prefix}/{token}"
