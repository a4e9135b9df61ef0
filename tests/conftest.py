"""Shared test fixtures for webhookbot."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator, Sequence
from pathlib import Path

import pytest

from webhookbot.config import Settings
from webhookbot.errors import DeliveryFailure
from webhookbot.models import ChatCommand, CommandAdvertisement
from webhookbot.registry.db import WebhookDB
from webhookbot.registry.store import WebhookRegistry

HTTP_PREFIX = "https://bots.example.com/webhookbot"
CONVERSATION = "conv-1"


class FakeTransport:
    """In-memory ChatTransport recording every message it is asked to send."""

    def __init__(self, commands: Sequence[ChatCommand] = ()) -> None:
        self.sent: list[tuple[str, str]] = []
        self.advertised: list[list[CommandAdvertisement]] = []
        self.unreachable: set[str] = set()
        self.closed = False
        self._commands = list(commands)

    async def send_message(self, conversation_id: str, text: str) -> None:
        if conversation_id in self.unreachable:
            raise DeliveryFailure(f"conversation {conversation_id} unreachable")
        self.sent.append((conversation_id, text))

    async def receive_commands(self) -> AsyncIterator[ChatCommand]:
        for command in self._commands:
            yield command
        # Idle like a real long poll until cancelled
        await asyncio.Event().wait()

    async def advertise(self, commands: Sequence[CommandAdvertisement]) -> None:
        self.advertised.append(list(commands))

    async def aclose(self) -> None:
        self.closed = True

    def texts(self, conversation_id: str = CONVERSATION) -> list[str]:
        return [text for conv, text in self.sent if conv == conversation_id]


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "webhooks.db")


@pytest.fixture
def registry(db_path: str) -> Iterator[WebhookRegistry]:
    db = WebhookDB(db_path)
    yield WebhookRegistry(db)
    db.close()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def settings(db_path: str) -> Settings:
    return Settings(dsn=f"sqlite:///{db_path}", http_prefix=HTTP_PREFIX)


def make_command(text: str, conversation_id: str = CONVERSATION, sender: str = "alice") -> ChatCommand:
    """Factory for ChatCommand with sensible defaults."""
    return ChatCommand(conversation_id=conversation_id, sender=sender, text=text)
