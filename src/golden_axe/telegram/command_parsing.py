"""Bot command extraction from message text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from .models import TelegramMessageEntity

_COMMAND_NAME_RE = re.compile(r"^[a-z0-9_]{1,32}$")


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: str
    raw: str


def parse_command(
    text: Optional[str],
    *,
    entities: Sequence[TelegramMessageEntity] = (),
    bot_username: Optional[str] = None,
) -> Optional[ParsedCommand]:
    """Return the command at the start of ``text``, or ``None``.

    Commands addressed to another bot (``/title@otherbot``) are ignored when
    ``bot_username`` is known.
    """
    if not text:
        return None
    if entities:
        return _parse_from_entities(text, entities=entities, bot_username=bot_username)
    return _parse_from_text(text, bot_username=bot_username)


def _parse_from_entities(
    text: str,
    *,
    entities: Sequence[TelegramMessageEntity],
    bot_username: Optional[str],
) -> Optional[ParsedCommand]:
    command_entity = next(
        (
            entity
            for entity in entities
            if entity.type == "bot_command" and entity.offset == 0
        ),
        None,
    )
    if command_entity is None or command_entity.length > len(text):
        return None
    command_text = text[: command_entity.length]
    if not command_text.startswith("/"):
        return None
    name = _strip_target(command_text[1:], bot_username)
    if not name:
        return None
    args = text[command_entity.length :].strip()
    return ParsedCommand(name=name.lower(), args=args, raw=text.strip())


def _parse_from_text(
    text: str, *, bot_username: Optional[str]
) -> Optional[ParsedCommand]:
    trimmed = text.strip()
    if not trimmed.startswith("/"):
        return None
    parts = trimmed.split(None, 1)
    name = _strip_target(parts[0][1:], bot_username)
    if not name or not _COMMAND_NAME_RE.fullmatch(name.lower()):
        return None
    args = parts[1].strip() if len(parts) > 1 else ""
    return ParsedCommand(name=name.lower(), args=args, raw=trimmed)


def _strip_target(command: str, bot_username: Optional[str]) -> Optional[str]:
    if "@" not in command:
        return command
    name, _, target = command.partition("@")
    if bot_username and target.lower() != bot_username.lower():
        return None
    return name
