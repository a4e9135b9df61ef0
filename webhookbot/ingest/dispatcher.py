"""Webhook dispatch pipeline.

Stages for one inbound callback:
1. Token shape check
2. Registry lookup
3. Rate limit
4. Payload check and render against the stored template
5. Deliver to the chat transport
6. Audit

Payload contents are never logged at any stage.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from webhookbot.errors import (
    DeliveryFailure,
    EmptyPayloadError,
    NotFoundError,
    StorageFailure,
    TemplateError,
    TokenRetiredError,
)
from webhookbot.models import AuditEventType, RiskLevel
from webhookbot.registry.store import is_well_formed_token

if TYPE_CHECKING:
    from webhookbot.audit.logger import AuditLogger
    from webhookbot.chat.transport import ChatTransport
    from webhookbot.ingest.rate_limiter import WebhookRateLimiter
    from webhookbot.registry.store import WebhookRegistry
    from webhookbot.render.renderer import TemplateRenderer

logger = logging.getLogger(__name__)


def has_content(payload: Mapping[str, Any]) -> bool:
    """True if at least one field carries a value other than null or blank text."""
    return any(
        value is not None and not (isinstance(value, str) and not value.strip())
        for value in payload.values()
    )


@dataclass
class DispatchResult:
    """Outcome reported to the HTTP caller."""

    status_code: int
    message: str


class WebhookDispatcher:
    """Resolves a token, renders the payload and posts it into the conversation."""

    def __init__(
        self,
        registry: WebhookRegistry,
        renderer: TemplateRenderer,
        transport: ChatTransport,
        rate_limiter: WebhookRateLimiter | None = None,
        audit_logger: AuditLogger | None = None,
        on_storage_failure: Callable[[StorageFailure], None] | None = None,
    ) -> None:
        self._registry = registry
        self._renderer = renderer
        self._transport = transport
        self._rate_limiter = rate_limiter
        self._audit = audit_logger
        self._on_storage_failure = on_storage_failure

    async def dispatch(
        self,
        token: str,
        payload: Mapping[str, Any],
        source_ip: str | None = None,
    ) -> DispatchResult:
        # Stage 1: token shape
        if not is_well_formed_token(token):
            await self._reject(source_ip, "malformed")
            return DispatchResult(400, "Malformed webhook token")

        # Stage 2: registry lookup, off the event loop since SQLite may wait on a lock
        try:
            webhook = await asyncio.to_thread(self._registry.resolve, token)
        except TokenRetiredError:
            await self._reject(source_ip, "retired")
            return DispatchResult(410, "Webhook has been removed")
        except NotFoundError:
            await self._reject(source_ip, "unknown")
            return DispatchResult(404, "Webhook not found")
        except StorageFailure as exc:
            logger.error("Registry unavailable while resolving webhook: %s", exc)
            if self._on_storage_failure:
                self._on_storage_failure(exc)
            return DispatchResult(503, "Service unavailable")

        # Stage 3: rate limit
        if self._rate_limiter and not self._rate_limiter.check(token):
            logger.warning("Rate limit hit for webhook %r", webhook.name)
            await self._audit_record(
                AuditEventType.RATE_LIMITED, f"dispatch:{webhook.name}",
                result="blocked", risk_level=RiskLevel.MEDIUM,
                source_ip=source_ip, conversation_id=webhook.conversation_id,
            )
            return DispatchResult(429, "Too many requests")

        # Stage 4: render
        try:
            if not has_content(payload):
                raise EmptyPayloadError("Request carried no message content")
            text = self._renderer.render(payload, webhook.template)
            if not text.strip():
                raise EmptyPayloadError("Rendered message is empty")
        except EmptyPayloadError as exc:
            return DispatchResult(400, str(exc))
        except TemplateError as exc:
            # Stored templates are validated on write; keep the webhook and report
            logger.error("Stored template for webhook %r failed to render: %s", webhook.name, exc)
            await self._failed(webhook.name, webhook.conversation_id, source_ip, "template_error")
            return DispatchResult(500, "Webhook template could not be rendered")

        # Stage 5: deliver
        try:
            await self._transport.send_message(webhook.conversation_id, text)
        except DeliveryFailure as exc:
            logger.error(
                "Delivery failed for webhook %r to conversation %s: %s",
                webhook.name, webhook.conversation_id, exc,
            )
            await self._failed(webhook.name, webhook.conversation_id, source_ip, "delivery_failure")
            return DispatchResult(502, "Chat delivery failed")

        # Stage 6: audit
        logger.info("Dispatched webhook %r to conversation %s", webhook.name, webhook.conversation_id)
        await self._audit_record(
            AuditEventType.WEBHOOK_DISPATCHED, f"dispatch:{webhook.name}",
            source_ip=source_ip, conversation_id=webhook.conversation_id,
        )
        return DispatchResult(200, "ok")

    async def _audit_record(self, event_type: AuditEventType, action: str, **fields: Any) -> None:
        # Audit writes fsync; keep them off the event loop
        if self._audit:
            await asyncio.to_thread(self._audit.record, event_type, action, **fields)

    async def _reject(self, source_ip: str | None, reason: str) -> None:
        logger.info("Rejected webhook call: %s token", reason)
        await self._audit_record(
            AuditEventType.TOKEN_REJECTED, "dispatch",
            result="failure", risk_level=RiskLevel.MEDIUM,
            source_ip=source_ip, details={"reason": reason},
        )

    async def _failed(
        self, name: str, conversation_id: str, source_ip: str | None, reason: str,
    ) -> None:
        await self._audit_record(
            AuditEventType.DISPATCH_FAILED, f"dispatch:{name}",
            result="failure", risk_level=RiskLevel.LOW,
            source_ip=source_ip, conversation_id=conversation_id,
            details={"reason": reason},
        )
