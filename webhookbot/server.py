"""Process supervisor: runs the bot's long-lived tasks as one fail-fast group.

Tasks:
- chat listener (feeds the command handler)
- HTTP listener (uvicorn serving the ingestion app)
- signal handler (SIGINT/SIGTERM start a graceful shutdown)
- announcer (advertises commands once, then idles)

If any task fails, the others are stopped and ``run`` raises. In-flight
HTTP requests are drained before the group is torn down.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Awaitable, Iterator
from typing import TYPE_CHECKING, Protocol

import uvicorn

from webhookbot.commands.handler import CommandHandler
from webhookbot.commands.text import advertisement
from webhookbot.errors import StorageFailure
from webhookbot.ingest.app import create_app
from webhookbot.ingest.dispatcher import WebhookDispatcher
from webhookbot.ingest.rate_limiter import WebhookRateLimiter
from webhookbot.render.renderer import TemplateRenderer

if TYPE_CHECKING:
    from webhookbot.audit.logger import AuditLogger
    from webhookbot.chat.transport import ChatTransport
    from webhookbot.config import Settings
    from webhookbot.registry.store import WebhookRegistry

logger = logging.getLogger(__name__)

_DRAIN_TIMEOUT_SECONDS = 10
ANNOUNCEMENT_TEXT = "I live."


class HTTPServer(Protocol):
    should_exit: bool

    async def serve(self) -> None: ...


class _SupervisedServer(uvicorn.Server):
    """uvicorn server whose shutdown is driven by the supervisor's signal task."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


class BotServer:
    def __init__(
        self,
        settings: Settings,
        registry: WebhookRegistry,
        transport: ChatTransport,
        audit_logger: AuditLogger | None = None,
        http_server: HTTPServer | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        renderer = TemplateRenderer()
        self.handler = CommandHandler(settings, registry, renderer, transport, audit_logger)
        self.dispatcher = WebhookDispatcher(
            registry,
            renderer,
            transport,
            rate_limiter=WebhookRateLimiter(settings.rate_limit, settings.rate_window_seconds),
            audit_logger=audit_logger,
            on_storage_failure=self._on_storage_failure,
        )
        self._http = http_server or self._build_http_server()
        self._stopping = asyncio.Event()
        self._http_done = asyncio.Event()
        self._listener: asyncio.Task[None] | None = None
        self._fatal: StorageFailure | None = None

    def _build_http_server(self) -> HTTPServer:
        config = uvicorn.Config(
            create_app(self.dispatcher, self._settings.route_path),
            host=self._settings.http_host,
            port=self._settings.http_port,
            lifespan="off",
            log_config=None,
            # Access log lines would contain tokens and query payloads
            access_log=False,
            timeout_graceful_shutdown=_DRAIN_TIMEOUT_SECONDS,
        )
        return _SupervisedServer(config)

    async def run(self) -> None:
        """Run all tasks until shutdown; raises ``ExceptionGroup`` if any task failed."""
        try:
            async with asyncio.TaskGroup() as tg:
                self._listener = tg.create_task(self._guard("chat listener", self._listen()))
                tg.create_task(self._guard("http listener", self._serve_http()))
                tg.create_task(self._guard("signal handler", self._handle_signals()))
                tg.create_task(self._guard("announcer", self._announce_and_advertise()))
        finally:
            await self._transport.aclose()
        logger.info("Shutdown complete")

    def shutdown(self) -> None:
        """Begin a graceful shutdown of every task."""
        self._stopping.set()
        self._http.should_exit = True

    def _on_storage_failure(self, exc: StorageFailure) -> None:
        if self._fatal is None:
            self._fatal = exc
        self.shutdown()

    async def _guard(self, name: str, task: Awaitable[None]) -> None:
        try:
            await task
        except Exception:
            logger.exception("%s failed, shutting down", name)
            self.shutdown()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._http_done.wait(), _DRAIN_TIMEOUT_SECONDS)
            raise

    async def _listen(self) -> None:
        async for command in self._transport.receive_commands():
            await self.handler.handle(command)

    async def _serve_http(self) -> None:
        logger.info(
            "Serving webhooks on %s:%s", self._settings.http_host, self._settings.http_port,
        )
        try:
            await self._http.serve()
        except SystemExit as exc:
            # uvicorn exits the process when it cannot bind
            raise RuntimeError("HTTP listener failed to start") from exc
        finally:
            self._http_done.set()
        if self._fatal is not None:
            raise self._fatal
        if not self._stopping.is_set():
            raise RuntimeError("HTTP listener stopped unexpectedly")

    async def _handle_signals(self) -> None:
        loop = asyncio.get_running_loop()
        signals = (signal.SIGINT, signal.SIGTERM)
        for sig in signals:
            loop.add_signal_handler(sig, self._on_signal, sig)
        try:
            await self._stopping.wait()
        finally:
            for sig in signals:
                loop.remove_signal_handler(sig)
        self._http.should_exit = True
        if self._listener is not None:
            self._listener.cancel()

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down", sig.name)
        self.shutdown()

    async def _announce_and_advertise(self) -> None:
        await self._transport.advertise(advertisement(self._settings.command_prefix))
        if self._settings.announcement:
            await self._transport.send_message(self._settings.announcement, ANNOUNCEMENT_TEXT)
        await self._stopping.wait()
