"""Telegram Bot API chat transport.

Receives messages by long polling ``getUpdates`` and sends with
``sendMessage``. A Telegram chat id is the conversation id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from webhookbot.commands.parser import command_name
from webhookbot.errors import DeliveryFailure
from webhookbot.models import ChatCommand, CommandAdvertisement

logger = logging.getLogger(__name__)

_API_BASE = "https://api.telegram.org"
_POLL_TIMEOUT_SECONDS = 30
_ERROR_BACKOFF_SECONDS = 5
_MAX_DESCRIPTION = 256  # Bot API limit for command descriptions
_MAX_MESSAGE_LENGTH = 4096  # Bot API limit, counted in UTF-16 code units
TRUNCATION_MARKER = "\n[message truncated]"


def _utf16_length(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


def truncate_message(text: str, limit: int = _MAX_MESSAGE_LENGTH) -> str:
    """Cut ``text`` to fit the Bot API message limit, marking the cut."""
    if _utf16_length(text) <= limit:
        return text
    budget = limit - _utf16_length(TRUNCATION_MARKER)
    # A surrogate pair split at the boundary is dropped by errors="ignore"
    head = text.encode("utf-16-le")[: budget * 2].decode("utf-16-le", errors="ignore")
    return head + TRUNCATION_MARKER


def extract_command(update: dict[str, Any]) -> ChatCommand | None:
    """Turn a Telegram update into a ``ChatCommand``; None for non-text updates."""
    message = update.get("message") or {}
    text = message.get("text")
    chat = message.get("chat") or {}
    if not text or "id" not in chat:
        return None
    sender = message.get("from") or {}
    return ChatCommand(
        conversation_id=str(chat["id"]),
        sender=str(sender.get("username") or sender.get("id", "")),
        text=text,
    )


class TelegramTransport:
    """``ChatTransport`` over the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        client: httpx.AsyncClient | None = None,
        api_base: str = _API_BASE,
        poll_timeout: int = _POLL_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = f"{api_base.rstrip('/')}/bot{bot_token}"
        # TLS verification stays on; read timeout must outlast a long poll
        self._client = client or httpx.AsyncClient(
            verify=True, timeout=httpx.Timeout(10.0, read=poll_timeout + 10.0),
        )
        self._poll_timeout = poll_timeout
        self._offset = 0

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        try:
            resp = await self._client.post(f"{self._base_url}/{method}", json=payload)
        except httpx.HTTPError as exc:
            raise DeliveryFailure(f"{method} failed: {exc.__class__.__name__}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400 or not body.get("ok", False):
            description = body.get("description", f"HTTP {resp.status_code}")
            raise DeliveryFailure(f"{method} rejected: {description}")
        return body.get("result")

    async def send_message(self, conversation_id: str, text: str) -> None:
        """Send once; retry policy belongs to the caller."""
        await self._call(
            "sendMessage", {"chat_id": conversation_id, "text": truncate_message(text)},
        )

    async def receive_commands(self) -> AsyncIterator[ChatCommand]:
        """Yield incoming text messages forever, acknowledging each update once."""
        while True:
            try:
                updates = await self._call("getUpdates", {
                    "offset": self._offset,
                    "timeout": self._poll_timeout,
                    "allowed_updates": ["message"],
                })
            except DeliveryFailure as exc:
                logger.warning("Polling for updates failed: %s", exc)
                await asyncio.sleep(_ERROR_BACKOFF_SECONDS)
                continue

            for update in updates or []:
                update_id = int(update.get("update_id", 0))
                if update_id < self._offset:
                    continue
                self._offset = update_id + 1
                command = extract_command(update)
                if command is not None:
                    yield command

    async def advertise(self, commands: Sequence[CommandAdvertisement]) -> None:
        """Publish the top-level commands with their subcommands as description."""
        grouped: dict[str, list[str]] = {}
        for cmd in commands:
            top, _, sub = cmd.name.partition(" ")
            grouped.setdefault(command_name(top), []).append(sub or cmd.description)
        await self._call("setMyCommands", {
            "commands": [
                {"command": top, "description": ", ".join(subs)[:_MAX_DESCRIPTION]}
                for top, subs in grouped.items()
            ],
        })

    async def aclose(self) -> None:
        await self._client.aclose()
