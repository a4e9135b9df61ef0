"""Template renderer: turns an inbound payload into chat message text.

Templates use Jinja2 syntax evaluated in an immutable sandbox with no
loader, so a template can only read the payload it is given. Go-style
leading-dot references are accepted as shorthand: ``{{.title}}`` is the
same as ``{{ title }}``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from jinja2 import ChainableUndefined, Template, TemplateSyntaxError, nodes
from jinja2 import TemplateError as JinjaTemplateError
from jinja2.sandbox import ImmutableSandboxedEnvironment

from webhookbot.errors import TemplateError

DEFAULT_FIELD = "msg"

# Expression/statement blocks; their contents get the dot shorthand rewrite
_BLOCK = re.compile(r"({{-?|{%-?)(.*?)(-?}}|-?%})", re.DOTALL)
# A string literal, or a '.' that starts a reference rather than an attribute access
_LEADING_DOT = re.compile(r"""("[^"]*"|'[^']*')|(?<![\w)\]])\.(?=[A-Za-z_])""")

_FORBIDDEN_NODES = (nodes.Include, nodes.Import, nodes.FromImport, nodes.Extends)


def _strip_leading_dots(expr: str) -> str:
    return _LEADING_DOT.sub(lambda m: m.group(1) or "", expr)


def normalize_template(source: str) -> str:
    """Rewrite Go-style ``.field`` references into plain Jinja2 names."""
    return _BLOCK.sub(
        lambda m: m.group(1) + _strip_leading_dots(m.group(2)) + m.group(3), source,
    )


def render_default(payload: Mapping[str, Any]) -> str:
    """Default rendering: ``msg`` verbatim if present, otherwise a compact JSON dump."""
    msg = payload.get(DEFAULT_FIELD)
    if msg is not None and msg != "":
        return msg if isinstance(msg, str) else json.dumps(msg, ensure_ascii=False, default=str)
    return json.dumps(
        dict(payload), sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str,
    )


class TemplateRenderer:
    """Stateless renderer over a sandboxed Jinja2 environment."""

    def __init__(self) -> None:
        self._env = ImmutableSandboxedEnvironment(
            autoescape=False,
            undefined=ChainableUndefined,
            keep_trailing_newline=True,
        )

    def validate(self, template: str) -> None:
        """Raise ``TemplateError`` if ``template`` is not a usable template."""
        if template:
            self._compile(template)

    def render(self, payload: Mapping[str, Any], template: str | None = None) -> str:
        if not template:
            return render_default(payload)

        compiled = self._compile(template)
        context = dict(payload)
        context.setdefault("payload", dict(payload))
        try:
            return compiled.render(context)
        except JinjaTemplateError as exc:
            raise TemplateError(exc.message or str(exc)) from exc
        except (ArithmeticError, LookupError, TypeError, ValueError) as exc:
            raise TemplateError(f"template evaluation failed: {exc}") from exc

    def _compile(self, template: str) -> Template:
        source = normalize_template(template)
        try:
            tree = self._env.parse(source)
        except TemplateSyntaxError as exc:
            raise TemplateError(exc.message or "invalid template syntax", exc.lineno) from exc
        forbidden = next(iter(tree.find_all(_FORBIDDEN_NODES)), None)
        if forbidden is not None:
            raise TemplateError("templates cannot load other templates", forbidden.lineno)
        return self._env.from_string(tree)
