"""Error taxonomy shared by the registry, renderer, ingestion server and command handler."""

from __future__ import annotations


class WebhookBotError(Exception):
    """Base class for all expected webhookbot failures."""


class ConflictError(WebhookBotError):
    """Raised when a webhook name is already taken in a conversation."""

    def __init__(self, conversation_id: str, name: str) -> None:
        self.conversation_id = conversation_id
        self.name = name
        super().__init__(f"Webhook '{name}' already exists in conversation {conversation_id}")


class NotFoundError(WebhookBotError):
    """Raised when a webhook name or token does not resolve to a registry entry."""


class TokenRetiredError(NotFoundError):
    """Raised when a token belonged to a webhook that has since been removed."""


class TemplateError(WebhookBotError):
    """Raised when a template cannot be parsed or evaluated."""

    def __init__(self, message: str, lineno: int | None = None) -> None:
        self.message = message
        self.lineno = lineno
        if lineno is not None:
            message = f"line {lineno}: {message}"
        super().__init__(message)


class EmptyPayloadError(WebhookBotError):
    """Raised when an inbound request carries no message content."""


class DeliveryFailure(WebhookBotError):
    """Raised when the chat transport does not accept a message."""


class StorageFailure(WebhookBotError):
    """Raised when the persistent store is unavailable or misbehaving."""
