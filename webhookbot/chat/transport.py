"""Contract between the bot core and the chat service it runs on."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Protocol

from webhookbot.models import ChatCommand, CommandAdvertisement


class ChatTransport(Protocol):
    """What the core needs from a chat service.

    ``send_message`` raises ``DeliveryFailure`` when the service does not
    accept the message; callers decide whether that is fatal.
    """

    async def send_message(self, conversation_id: str, text: str) -> None: ...

    def receive_commands(self) -> AsyncIterator[ChatCommand]: ...

    async def advertise(self, commands: Sequence[CommandAdvertisement]) -> None: ...

    async def aclose(self) -> None: ...
