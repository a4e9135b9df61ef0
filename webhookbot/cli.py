"""Click entry point for the webhook bot."""

from __future__ import annotations

import asyncio
import logging

import click
from pydantic import ValidationError

from webhookbot.audit.logger import AuditLogger
from webhookbot.chat.telegram import TelegramTransport
from webhookbot.config import Settings
from webhookbot.errors import StorageFailure
from webhookbot.registry.db import WebhookDB
from webhookbot.registry.store import WebhookRegistry
from webhookbot.server import BotServer

EXIT_FAILURE = 3

logger = logging.getLogger(__name__)


@click.command()
@click.option("--dsn", envvar="BOT_DSN", default="", help="Database DSN (sqlite:///path or a path).")
@click.option(
    "--http-prefix", envvar="BOT_HTTP_PREFIX", default="",
    help="Desired prefix for generated webhooks.",
)
@click.option("--http-host", envvar="BOT_HTTP_HOST", default="0.0.0.0", help="Listen address.")
@click.option("--http-port", envvar="BOT_HTTP_PORT", default=8080, type=int, help="Listen port.")
@click.option("--bot-token", envvar="TELEGRAM_BOT_TOKEN", default="", help="Telegram bot token.")
@click.option(
    "--command-prefix", envvar="BOT_COMMAND_PREFIX", default="!webhook",
    help="Leading word of bot commands.",
)
@click.option(
    "--announcement", envvar="BOT_ANNOUNCEMENT", default=None,
    help="Conversation to announce startup in.",
)
@click.option(
    "--err-report-conv", envvar="BOT_ERR_REPORT_CONV", default=None,
    help="Conversation that receives error reports.",
)
@click.option("--audit-log", envvar="AUDIT_LOG_PATH", default=None, help="Audit log file path.")
@click.option("--rate-limit", envvar="BOT_RATE_LIMIT", default=60, type=int,
              help="Max calls per webhook per window.")
@click.option("--rate-window", envvar="BOT_RATE_WINDOW", default=60, type=int,
              help="Rate limit window in seconds.")
@click.option(
    "--log-level", envvar="BOT_LOG_LEVEL", default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.pass_context
def main(
    ctx: click.Context,
    dsn: str,
    http_prefix: str,
    http_host: str,
    http_port: int,
    bot_token: str,
    command_prefix: str,
    announcement: str | None,
    err_report_conv: str | None,
    audit_log: str | None,
    rate_limit: int,
    rate_window: int,
    log_level: str,
) -> None:
    """Run the webhook bot: chat commands plus the HTTP callback server."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = Settings(
            dsn=dsn,
            http_prefix=http_prefix,
            http_host=http_host,
            http_port=http_port,
            bot_token=bot_token,
            command_prefix=command_prefix,
            announcement=announcement,
            err_report_conv=err_report_conv,
            audit_log_path=audit_log,
            rate_limit=rate_limit,
            rate_window_seconds=rate_window,
        )
    except ValidationError as exc:
        click.echo(f"Unable to parse options: {exc}", err=True)
        ctx.exit(EXIT_FAILURE)
    if not settings.bot_token:
        click.echo("must specify a bot token", err=True)
        ctx.exit(EXIT_FAILURE)

    ctx.exit(run(settings))


def run(settings: Settings) -> int:
    """Run the bot until shutdown and return the process exit code."""
    try:
        db = WebhookDB.from_dsn(settings.dsn)
    except StorageFailure as exc:
        click.echo(f"failed to open database: {exc}", err=True)
        return EXIT_FAILURE

    audit_logger = AuditLogger.from_env(settings.audit_log_path) if settings.audit_log_path else None
    server = BotServer(
        settings,
        WebhookRegistry(db),
        TelegramTransport(settings.bot_token),
        audit_logger=audit_logger,
    )
    try:
        asyncio.run(server.run())
    except Exception as exc:  # ExceptionGroup from the task group included
        logger.debug("Supervisor error", exc_info=True)
        click.echo(f"error running chat loop: {exc}", err=True)
        return EXIT_FAILURE
    finally:
        db.close()
    return 0
