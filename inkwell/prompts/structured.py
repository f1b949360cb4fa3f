"""Placeholder templates and ``<message role="...">`` prompt parsing."""

from __future__ import annotations

import re

from inkwell.llm.types import Message

_MESSAGE_RE = re.compile(
    r'<message role="(system|user|assistant)">(.*?)</message>',
    re.IGNORECASE | re.DOTALL,
)
_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z][A-Za-z0-9_]*)\}")


def parse_structured_prompt(prompt: str) -> list[Message]:
    """
    Split *prompt* into messages.

    Each ``<message role="system|user|assistant">...</message>`` block
    becomes one message with trimmed content.  A prompt without such blocks
    is sent as a single user message.
    """
    messages = [
        Message(role=m.group(1).lower(), content=m.group(2).strip())
        for m in _MESSAGE_RE.finditer(prompt)
    ]
    if not messages:
        messages.append(Message(role="user", content=prompt))
    return messages


def fill_template(template: str, values: dict[str, str]) -> str:
    """
    Replace ``{name}`` placeholders with *values*.

    Unknown placeholders are left untouched so that literal braces in custom
    prompts survive.  Substituted text is never re-scanned.
    """

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        if key in values:
            return values[key] or ""
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_sub, template)


def escape_xml(value: object) -> str:
    text = "" if value is None else str(value)
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def sanitize_tag_name(name: object) -> str:
    """Turn a free-form field name into a camelCase XML tag name."""
    text = str(name or "").lower()
    text = re.sub(r"[^a-z0-9]+(.)", lambda m: m.group(1).upper(), text)
    return re.sub(r"[^a-zA-Z0-9]", "", text)


def indent_block(text: str, indentation: str = "    ") -> str:
    if not text:
        return ""
    return "\n".join(f"{indentation}{line}" if line else line for line in text.split("\n"))
