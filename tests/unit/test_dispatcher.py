"""Tests for the webhook dispatch pipeline."""

from __future__ import annotations

import asyncio
import threading
from typing import Any
from unittest.mock import MagicMock

import pytest

from tests.conftest import CONVERSATION, FakeTransport
from webhookbot.errors import StorageFailure, TemplateError
from webhookbot.ingest.dispatcher import WebhookDispatcher
from webhookbot.ingest.rate_limiter import WebhookRateLimiter
from webhookbot.models import AuditEventType
from webhookbot.registry.store import WebhookRegistry, mint_token
from webhookbot.render.renderer import TemplateRenderer


def _make_dispatcher(**kwargs: Any) -> WebhookDispatcher:
    defaults: dict[str, Any] = {
        "registry": MagicMock(),
        "renderer": TemplateRenderer(),
        "transport": FakeTransport(),
        "rate_limiter": None,
        "audit_logger": None,
    }
    defaults.update(kwargs)
    return WebhookDispatcher(**defaults)


class TestTokenResolution:
    @pytest.mark.asyncio
    async def test_malformed_token(self) -> None:
        registry = MagicMock()
        dispatcher = _make_dispatcher(registry=registry)
        result = await dispatcher.dispatch("not-a-token", {"msg": "hi"})
        assert result.status_code == 400
        registry.resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_token(self, registry: WebhookRegistry) -> None:
        transport = FakeTransport()
        dispatcher = _make_dispatcher(registry=registry, transport=transport)
        result = await dispatcher.dispatch(mint_token(), {"msg": "hi"})
        assert result.status_code == 404
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_retired_token(self, registry: WebhookRegistry) -> None:
        token = registry.create(CONVERSATION, "alerts")
        registry.remove(CONVERSATION, "alerts")
        transport = FakeTransport()
        dispatcher = _make_dispatcher(registry=registry, transport=transport)

        result = await dispatcher.dispatch(token, {"msg": "hi"})
        assert result.status_code == 410
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_storage_failure_escalates(self) -> None:
        registry = MagicMock()
        registry.resolve.side_effect = StorageFailure("database is locked")
        escalate = MagicMock()
        dispatcher = _make_dispatcher(registry=registry, on_storage_failure=escalate)

        result = await dispatcher.dispatch(mint_token(), {"msg": "hi"})
        assert result.status_code == 503
        escalate.assert_called_once()
        assert isinstance(escalate.call_args[0][0], StorageFailure)

    @pytest.mark.asyncio
    async def test_slow_lookup_does_not_block_event_loop(self) -> None:
        started = threading.Event()
        release = threading.Event()

        def slow_resolve(token: str) -> None:
            started.set()
            release.wait(2)
            raise StorageFailure("database is locked")

        registry = MagicMock()
        registry.resolve.side_effect = slow_resolve
        dispatcher = _make_dispatcher(registry=registry)

        task = asyncio.create_task(dispatcher.dispatch(mint_token(), {"msg": "hi"}))
        await asyncio.to_thread(started.wait, 2)
        # The loop is free while the lookup waits on the database
        assert not task.done()
        release.set()
        assert (await task).status_code == 503


class TestDelivery:
    @pytest.mark.asyncio
    async def test_delivers_rendered_text(self, registry: WebhookRegistry) -> None:
        token = registry.create(CONVERSATION, "alerts", "{{.title}}")
        transport = FakeTransport()
        dispatcher = _make_dispatcher(registry=registry, transport=transport)

        result = await dispatcher.dispatch(token, {"title": "Disk full"})
        assert result.status_code == 200
        assert transport.sent == [(CONVERSATION, "Disk full")]

    @pytest.mark.asyncio
    async def test_empty_payload(self, registry: WebhookRegistry) -> None:
        token = registry.create(CONVERSATION, "alerts")
        transport = FakeTransport()
        dispatcher = _make_dispatcher(registry=registry, transport=transport)

        result = await dispatcher.dispatch(token, {})
        assert result.status_code == 400
        assert transport.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"msg": ""}, {"msg": "  "}, {"msg": "", "x": None}])
    async def test_blank_fields_are_empty_payload(
        self, registry: WebhookRegistry, payload: dict[str, Any],
    ) -> None:
        token = registry.create(CONVERSATION, "alerts")
        transport = FakeTransport()
        dispatcher = _make_dispatcher(registry=registry, transport=transport)

        result = await dispatcher.dispatch(token, payload)
        assert result.status_code == 400
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_blank_rendered_text_not_delivered(self, registry: WebhookRegistry) -> None:
        token = registry.create(CONVERSATION, "alerts", "{{.title}}")
        transport = FakeTransport()
        dispatcher = _make_dispatcher(registry=registry, transport=transport)

        result = await dispatcher.dispatch(token, {"other": "value"})
        assert result.status_code == 400
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_delivery_failure_not_retried(self, registry: WebhookRegistry) -> None:
        token = registry.create(CONVERSATION, "alerts")
        transport = FakeTransport()
        transport.unreachable.add(CONVERSATION)
        dispatcher = _make_dispatcher(registry=registry, transport=transport)

        result = await dispatcher.dispatch(token, {"msg": "hi"})
        assert result.status_code == 502

    @pytest.mark.asyncio
    async def test_broken_stored_template(self, registry: WebhookRegistry) -> None:
        token = registry.create(CONVERSATION, "alerts", "{{.title}}")
        renderer = MagicMock()
        renderer.render.side_effect = TemplateError("unexpected end of template")
        transport = FakeTransport()
        dispatcher = _make_dispatcher(registry=registry, renderer=renderer, transport=transport)

        result = await dispatcher.dispatch(token, {"title": "x"})
        assert result.status_code == 500
        assert transport.sent == []
        # Webhook stays registered
        assert registry.resolve(token).name == "alerts"

    @pytest.mark.asyncio
    async def test_rate_limited(self, registry: WebhookRegistry) -> None:
        token = registry.create(CONVERSATION, "alerts")
        transport = FakeTransport()
        dispatcher = _make_dispatcher(
            registry=registry, transport=transport,
            rate_limiter=WebhookRateLimiter(max_requests=1, window_seconds=60),
        )

        assert (await dispatcher.dispatch(token, {"msg": "1"})).status_code == 200
        assert (await dispatcher.dispatch(token, {"msg": "2"})).status_code == 429
        assert transport.texts() == ["1"]


class TestAudit:
    @pytest.mark.asyncio
    async def test_success_audited_without_payload(self, registry: WebhookRegistry) -> None:
        token = registry.create(CONVERSATION, "alerts")
        audit = MagicMock()
        dispatcher = _make_dispatcher(registry=registry, audit_logger=audit)

        await dispatcher.dispatch(token, {"msg": "secret-value"}, source_ip="10.0.0.1")

        args, kwargs = audit.record.call_args
        assert args[0] is AuditEventType.WEBHOOK_DISPATCHED
        assert kwargs["source_ip"] == "10.0.0.1"
        assert "secret-value" not in repr(audit.record.call_args)

    @pytest.mark.asyncio
    async def test_rejection_audited(self) -> None:
        audit = MagicMock()
        dispatcher = _make_dispatcher(audit_logger=audit)
        await dispatcher.dispatch("bad", {"msg": "hi"})

        args, kwargs = audit.record.call_args
        assert args[0] is AuditEventType.TOKEN_REJECTED
        assert kwargs["details"] == {"reason": "malformed"}

    @pytest.mark.asyncio
    async def test_payload_never_logged(
        self, registry: WebhookRegistry, caplog: pytest.LogCaptureFixture,
    ) -> None:
        token = registry.create(CONVERSATION, "alerts")
        transport = FakeTransport()
        transport.unreachable.add(CONVERSATION)
        dispatcher = _make_dispatcher(registry=registry, transport=transport)

        with caplog.at_level("DEBUG"):
            await dispatcher.dispatch(token, {"msg": "password=hunter2"})
        assert "hunter2" not in caplog.text
