"""Webhook registry: persistent store of webhook definitions.

Uniqueness of ``(conversation_id, name)`` and of tokens is enforced by the
database constraints, never by check-then-insert in Python.
"""

from __future__ import annotations

import logging
import re
import secrets
import sqlite3
from datetime import UTC, datetime

from webhookbot.errors import ConflictError, NotFoundError, StorageFailure, TokenRetiredError
from webhookbot.models import Webhook, WebhookSummary
from webhookbot.registry.db import WebhookDB

logger = logging.getLogger(__name__)

_TOKEN_BYTES = 32
# token_urlsafe(32) yields 43 characters of the URL-safe base64 alphabet
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{43}$")
_MAX_MINT_ATTEMPTS = 3


def mint_token() -> str:
    """Return a fresh 256-bit capability token."""
    return secrets.token_urlsafe(_TOKEN_BYTES)


def is_well_formed_token(token: str) -> bool:
    return TOKEN_PATTERN.fullmatch(token) is not None


class WebhookRegistry:
    """Data-access layer for webhooks. Each operation is one atomic transaction."""

    def __init__(self, db: WebhookDB) -> None:
        self._db = db

    def create(self, conversation_id: str, name: str, template: str = "") -> str:
        """Insert a new webhook and return its token.

        Raises ``ConflictError`` if the name is taken in the conversation.
        """
        created_at = datetime.now(UTC).isoformat()
        for _ in range(_MAX_MINT_ATTEMPTS):
            token = mint_token()
            try:
                cursor = self._db.execute(
                    """INSERT INTO webhooks (token, conversation_id, name, template, created_at)
                       SELECT ?, ?, ?, ?, ?
                       WHERE NOT EXISTS (SELECT 1 FROM retired_tokens WHERE token = ?)""",
                    (token, conversation_id, name, template, created_at, token),
                )
            except sqlite3.IntegrityError as exc:
                if "webhooks.token" in str(exc):
                    continue
                raise ConflictError(conversation_id, name) from exc
            if cursor.rowcount == 1:
                logger.info("Created webhook %r in conversation %s", name, conversation_id)
                return token
        raise StorageFailure("Could not mint a unique webhook token")

    def update_template(self, conversation_id: str, name: str, template: str) -> None:
        """Replace the template of an existing webhook; an empty template restores the default."""
        cursor = self._db.execute(
            "UPDATE webhooks SET template = ? WHERE conversation_id = ? AND name = ?",
            (template, conversation_id, name),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"No webhook named '{name}' in conversation {conversation_id}")

    def remove(self, conversation_id: str, name: str) -> None:
        """Delete a webhook and retire its token in the same transaction."""
        with self._db.transaction() as conn:
            rows = conn.execute(
                "DELETE FROM webhooks WHERE conversation_id = ? AND name = ? RETURNING token",
                (conversation_id, name),
            ).fetchall()
            if not rows:
                raise NotFoundError(f"No webhook named '{name}' in conversation {conversation_id}")
            conn.execute(
                "INSERT INTO retired_tokens (token, retired_at) VALUES (?, ?)",
                (rows[0]["token"], datetime.now(UTC).isoformat()),
            )
        logger.info("Removed webhook %r from conversation %s", name, conversation_id)

    def list(self, conversation_id: str) -> list[WebhookSummary]:
        rows = self._db.fetch_all(
            "SELECT name, template FROM webhooks WHERE conversation_id = ? ORDER BY name",
            (conversation_id,),
        )
        return [WebhookSummary(name=r["name"], has_template=bool(r["template"])) for r in rows]

    def get(self, conversation_id: str, name: str) -> Webhook:
        row = self._db.fetch_one(
            "SELECT * FROM webhooks WHERE conversation_id = ? AND name = ?",
            (conversation_id, name),
        )
        if row is None:
            raise NotFoundError(f"No webhook named '{name}' in conversation {conversation_id}")
        return Webhook.model_validate(row)

    def resolve(self, token: str) -> Webhook:
        """Look up a webhook by token (primary-key lookup).

        Raises ``TokenRetiredError`` for removed webhooks and ``NotFoundError``
        for tokens that never existed.
        """
        row = self._db.fetch_one("SELECT * FROM webhooks WHERE token = ?", (token,))
        if row is not None:
            return Webhook.model_validate(row)
        if self._db.fetch_one("SELECT 1 FROM retired_tokens WHERE token = ?", (token,)):
            raise TokenRetiredError("Webhook token has been retired")
        raise NotFoundError("Unknown webhook token")
