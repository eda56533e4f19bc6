"""Typed views over the Telegram Bot API payloads golden-axe consumes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

GROUP_CHAT_TYPES = frozenset({"group", "supergroup"})


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class TelegramUser:
    id: int
    is_bot: bool
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def full_name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["TelegramUser"]:
        if not isinstance(payload, dict):
            return None
        user_id = _as_int(payload.get("id"))
        if user_id is None:
            return None
        return cls(
            id=user_id,
            is_bot=bool(payload.get("is_bot", False)),
            first_name=_as_str(payload.get("first_name")) or "",
            last_name=_as_str(payload.get("last_name")),
            username=_as_str(payload.get("username")),
        )


@dataclass(frozen=True)
class TelegramChat:
    id: int
    type: str
    title: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.type in GROUP_CHAT_TYPES

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["TelegramChat"]:
        if not isinstance(payload, dict):
            return None
        chat_id = _as_int(payload.get("id"))
        if chat_id is None:
            return None
        return cls(
            id=chat_id,
            type=_as_str(payload.get("type")) or "",
            title=_as_str(payload.get("title")),
        )


@dataclass(frozen=True)
class TelegramMessageEntity:
    type: str
    offset: int
    length: int

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["TelegramMessageEntity"]:
        if not isinstance(payload, dict):
            return None
        offset = _as_int(payload.get("offset"))
        length = _as_int(payload.get("length"))
        entity_type = _as_str(payload.get("type"))
        if offset is None or length is None or entity_type is None:
            return None
        return cls(type=entity_type, offset=offset, length=length)


@dataclass(frozen=True)
class TelegramMessage:
    message_id: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = None
    text: Optional[str] = None
    entities: tuple[TelegramMessageEntity, ...] = ()
    # Custom title of an anonymous group administrator.
    author_signature: Optional[str] = None
    reply_to: Optional["TelegramMessage"] = None

    @property
    def chat_id(self) -> int:
        return self.chat.id

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["TelegramMessage"]:
        if not isinstance(payload, dict):
            return None
        message_id = _as_int(payload.get("message_id"))
        chat = TelegramChat.from_payload(payload.get("chat"))
        if message_id is None or chat is None:
            return None
        raw_entities = payload.get("entities")
        entities: list[TelegramMessageEntity] = []
        if isinstance(raw_entities, list):
            for raw in raw_entities:
                entity = TelegramMessageEntity.from_payload(raw)
                if entity is not None:
                    entities.append(entity)
        return cls(
            message_id=message_id,
            chat=chat,
            from_user=TelegramUser.from_payload(payload.get("from")),
            text=_as_str(payload.get("text")),
            entities=tuple(entities),
            author_signature=_as_str(payload.get("author_signature")),
            reply_to=cls.from_payload(payload.get("reply_to_message")),
        )


@dataclass(frozen=True)
class TelegramUpdate:
    update_id: int
    message: Optional[TelegramMessage] = None


def parse_update(payload: Any) -> Optional[TelegramUpdate]:
    if not isinstance(payload, dict):
        return None
    update_id = _as_int(payload.get("update_id"))
    if update_id is None:
        return None
    return TelegramUpdate(
        update_id=update_id,
        message=TelegramMessage.from_payload(payload.get("message")),
    )
