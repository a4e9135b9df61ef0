"""Command handler: manages the webhook registry from chat."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from webhookbot.commands.parser import Action, CommandUsageError, ParsedCommand, parse_command
from webhookbot.commands.text import help_text, usage_text
from webhookbot.errors import (
    ConflictError,
    DeliveryFailure,
    NotFoundError,
    StorageFailure,
    TemplateError,
)
from webhookbot.models import AuditEventType, ChatCommand, RiskLevel

if TYPE_CHECKING:
    from webhookbot.audit.logger import AuditLogger
    from webhookbot.chat.transport import ChatTransport
    from webhookbot.config import Settings
    from webhookbot.registry.store import WebhookRegistry
    from webhookbot.render.renderer import TemplateRenderer

logger = logging.getLogger(__name__)


class CommandHandler:
    """Executes parsed chat commands and replies in the originating conversation.

    Expected failures (name taken, unknown name, bad template, bad usage)
    become replies. ``StorageFailure`` is reported to the error-report
    conversation and re-raised so the supervisor can tear the process down.
    """

    def __init__(
        self,
        settings: Settings,
        registry: WebhookRegistry,
        renderer: TemplateRenderer,
        transport: ChatTransport,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._renderer = renderer
        self._transport = transport
        self._audit = audit_logger

    @property
    def prefix(self) -> str:
        return self._settings.command_prefix

    async def handle(self, command: ChatCommand) -> None:
        try:
            parsed = parse_command(command.text, self.prefix)
        except CommandUsageError as exc:
            action = exc.action.value if exc.action else None
            await self._reply(command, f"Invalid command: {exc}\n{usage_text(self.prefix, action)}")
            return
        if parsed is None:
            return

        try:
            # Registry and audit writes block on disk; keep them off the event loop
            reply = await asyncio.to_thread(self._execute, parsed, command)
        except StorageFailure as exc:
            logger.error("Storage failure handling %s: %s", parsed.action.value, exc)
            await self._report_error(command, parsed, exc)
            raise
        await self._reply(command, reply)

    def _execute(self, parsed: ParsedCommand, command: ChatCommand) -> str:
        if parsed.action is Action.CREATE:
            return self._create(parsed, command)
        if parsed.action is Action.UPDATE:
            return self._update(parsed, command)
        if parsed.action is Action.REMOVE:
            return self._remove(parsed, command)
        if parsed.action is Action.LIST:
            return self._list(command)
        return help_text(self.prefix)

    def _create(self, parsed: ParsedCommand, command: ChatCommand) -> str:
        try:
            self._renderer.validate(parsed.template)
        except TemplateError as exc:
            return f"Invalid template: {exc}"
        try:
            token = self._registry.create(command.conversation_id, parsed.name, parsed.template)
        except ConflictError:
            return f"A webhook named `{parsed.name}` already exists in this conversation."
        self._record(AuditEventType.WEBHOOK_CREATED, parsed, command)
        return (
            f"Success! Webhook `{parsed.name}` created. Keep this URL secret, "
            f"anyone holding it can post here:\n{self._settings.callback_url(token)}"
        )

    def _update(self, parsed: ParsedCommand, command: ChatCommand) -> str:
        try:
            self._renderer.validate(parsed.template)
        except TemplateError as exc:
            return f"Invalid template: {exc}"
        try:
            self._registry.update_template(command.conversation_id, parsed.name, parsed.template)
        except NotFoundError:
            return f"No webhook named `{parsed.name}` exists in this conversation."
        self._record(AuditEventType.WEBHOOK_UPDATED, parsed, command)
        if not parsed.template:
            return f"Success! Webhook `{parsed.name}` now uses the default format."
        return f"Success! Template updated for webhook `{parsed.name}`."

    def _remove(self, parsed: ParsedCommand, command: ChatCommand) -> str:
        try:
            self._registry.remove(command.conversation_id, parsed.name)
        except NotFoundError:
            return f"No webhook named `{parsed.name}` exists in this conversation."
        self._record(AuditEventType.WEBHOOK_REMOVED, parsed, command, RiskLevel.MEDIUM)
        return f"Success! Webhook `{parsed.name}` removed; its URL no longer accepts messages."

    def _list(self, command: ChatCommand) -> str:
        hooks = self._registry.list(command.conversation_id)
        if not hooks:
            return "No webhooks in this conversation."
        lines = [
            f"• `{hook.name}`" + (" (custom template)" if hook.has_template else "")
            for hook in hooks
        ]
        return "Webhooks in this conversation:\n" + "\n".join(lines)

    async def _reply(self, command: ChatCommand, text: str) -> None:
        try:
            await self._transport.send_message(command.conversation_id, text)
        except DeliveryFailure as exc:
            logger.warning("Could not reply in conversation %s: %s", command.conversation_id, exc)

    async def _report_error(
        self, command: ChatCommand, parsed: ParsedCommand, exc: Exception,
    ) -> None:
        conv = self._settings.err_report_conv
        if not conv:
            return
        text = (
            f"webhookbot: `{parsed.action.value}` from {command.sender} in "
            f"{command.conversation_id} failed: {exc}"
        )
        try:
            await self._transport.send_message(conv, text)
        except DeliveryFailure as report_exc:
            logger.warning("Could not post error report: %s", report_exc)

    def _record(
        self,
        event_type: AuditEventType,
        parsed: ParsedCommand,
        command: ChatCommand,
        risk_level: RiskLevel = RiskLevel.INFO,
    ) -> None:
        logger.info(
            "%s webhook %r in conversation %s by %s",
            parsed.action.value, parsed.name, command.conversation_id, command.sender,
        )
        if self._audit:
            self._audit.record(
                event_type, f"{parsed.action.value}:{parsed.name}",
                risk_level=risk_level,
                user_id=command.sender,
                conversation_id=command.conversation_id,
            )
