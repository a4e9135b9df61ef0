"""Parser for the ``webhook`` chat command grammar.

    <prefix> create <name> [<template...>]
    <prefix> update <name> [<template...>]
    <prefix> remove <name>
    <prefix> list
    <prefix> help

Words are split on the first whitespace run; everything after ``<name>``
is the template, kept verbatim. The prefix may also be given as the
slash command ``/<name>`` or ``/<name>@<bot>``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

_WHITESPACE = re.compile(r"\s+")
MAX_NAME_LENGTH = 64


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REMOVE = "remove"
    LIST = "list"
    HELP = "help"


# Actions taking a name, and whether trailing text (the template) is allowed
_NAMED = {Action.CREATE: True, Action.UPDATE: True, Action.REMOVE: False}


class CommandUsageError(ValueError):
    """Raised for a recognised command with the wrong arguments."""

    def __init__(self, message: str, action: Action | None = None) -> None:
        self.action = action
        super().__init__(message)


@dataclass(frozen=True)
class ParsedCommand:
    action: Action
    name: str = ""
    template: str = ""


def _split_first(text: str) -> tuple[str, str]:
    parts = _WHITESPACE.split(text, maxsplit=1)
    return parts[0], parts[1] if len(parts) > 1 else ""


def command_name(prefix: str) -> str:
    """The prefix as a chat-service slash command name, e.g. ``!webhook`` -> ``webhook``."""
    return prefix.lstrip("!/")


def _addressed(head: str, prefix: str) -> bool:
    if head == prefix:
        return True
    # Slash form from the advertised command list; groups append "@botname"
    slash, _, _bot = head.partition("@")
    return slash == "/" + command_name(prefix)


def parse_command(text: str, prefix: str) -> ParsedCommand | None:
    """Parse ``text``; None when it is not addressed to the bot at all."""
    head, rest = _split_first(text.lstrip())
    if not _addressed(head, prefix):
        return None

    word, rest = _split_first(rest)
    if not word:
        raise CommandUsageError("missing subcommand")
    try:
        action = Action(word.lower())
    except ValueError:
        raise CommandUsageError(f"unknown subcommand '{word}'") from None

    if action not in _NAMED:
        if rest.strip():
            raise CommandUsageError(f"'{action.value}' takes no arguments", action)
        return ParsedCommand(action)

    name, template = _split_first(rest)
    if not name:
        raise CommandUsageError("missing webhook name", action)
    if len(name) > MAX_NAME_LENGTH:
        raise CommandUsageError(
            f"webhook name must be at most {MAX_NAME_LENGTH} characters", action,
        )
    if template.strip() and not _NAMED[action]:
        raise CommandUsageError(f"'{action.value}' takes only a webhook name", action)
    if not template.strip():
        template = ""
    return ParsedCommand(action, name, template)
