"""User-facing command documentation: help text, usage lines and advertisement."""

from __future__ import annotations

from webhookbot.models import CommandAdvertisement

USAGE = {
    "create": "create <name> [<template>]",
    "update": "update <name> [<template>]",
    "remove": "remove <name>",
    "list": "list",
    "help": "help",
}


def usage_text(prefix: str, action: str | None = None) -> str:
    lines = [USAGE[action]] if action in USAGE else list(USAGE.values())
    return "Usage:\n" + "\n".join(f"`{prefix} {line}`" for line in lines)


def help_text(prefix: str) -> str:
    return f"""Webhooks post messages into this conversation from any HTTP caller.

Call a webhook URL with a `msg` query parameter:
```
curl "<webhook URL>?msg=Deploy+finished"
```
or POST a JSON object:
```
curl -X POST -H "Content-Type: application/json" -d '{{"title": "Disk full", "host": "db1"}}' <webhook URL>
```

Without a template, the `msg` field is posted as is, or all fields if there is no `msg`.

*Templates* control the message text. Fields of the query string and JSON body are available by name:
```
{prefix} create alerts *{{{{.title}}}}* on {{{{.host}}}}
```
• `{{{{.title}}}}` or `{{{{ title }}}}` inserts a field; missing fields render empty
• `{{{{.build.status}}}}` reads nested JSON fields
• `{{% if .failed %}}FAILED{{% else %}}ok{{% endif %}}` for conditionals
• `{{% for c in .commits %}}- {{{{ c.message }}}} {{% endfor %}}` for lists
• `{{{{ title | upper }}}}`, `{{{{ count | default(0) }}}}` apply filters
• `{{{{ payload }}}}` is the whole payload

Templates are checked when created or updated; a template with a syntax error is refused.
Use `{prefix} update <name>` with no template to go back to the default format.

{usage_text(prefix)}"""


def advertisement(prefix: str) -> list[CommandAdvertisement]:
    return [
        CommandAdvertisement(
            name=f"{prefix} create",
            usage="<name> [<template>]",
            description="Create a new webhook for sending into the current conversation",
            extended=(
                "You must supply a name to identify the webhook. Call the URL with a "
                "`msg` parameter, or POST a JSON body. An optional template customizes "
                f"the message; see `{prefix} help`."
            ),
        ),
        CommandAdvertisement(
            name=f"{prefix} update",
            usage="<name> [<template>]",
            description="Update the template of an existing webhook in the current conversation",
            extended="Leave the template empty to use the default format.",
        ),
        CommandAdvertisement(
            name=f"{prefix} list",
            description="List active webhooks in the current conversation",
        ),
        CommandAdvertisement(
            name=f"{prefix} remove",
            usage="<name>",
            description="Remove a webhook from the current conversation",
        ),
        CommandAdvertisement(
            name=f"{prefix} help",
            description="Get more information about using templates",
        ),
    ]
