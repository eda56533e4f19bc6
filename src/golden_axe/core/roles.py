"""Chat membership roles and the per-request role snapshot.

A role is one of a closed set of variants; only `Administrator` carries
capability flags. Telegram reports membership as a ``ChatMember`` payload
whose ``status`` selects the variant.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Union

from ..telegram.models import TelegramUser


@dataclass(frozen=True)
class Owner:
    user: TelegramUser


@dataclass(frozen=True)
class Administrator:
    user: TelegramUser
    can_be_edited: bool = False
    can_promote_members: bool = False
    can_invite_users: bool = False
    is_anonymous: bool = False


@dataclass(frozen=True)
class Member:
    user: TelegramUser


@dataclass(frozen=True)
class Restricted:
    user: TelegramUser


@dataclass(frozen=True)
class Left:
    user: TelegramUser


@dataclass(frozen=True)
class Banned:
    user: TelegramUser


ChatRole = Union[Owner, Administrator, Member, Restricted, Left, Banned]

_ROLE_NAMES: dict[type, str] = {
    Owner: "owner",
    Administrator: "admin",
    Member: "member",
    Restricted: "restricted",
    Left: "left",
    Banned: "banned",
}


def role_name(role: ChatRole) -> str:
    return _ROLE_NAMES[type(role)]


def is_admin_role(role: ChatRole) -> bool:
    return isinstance(role, (Owner, Administrator))


def parse_chat_member(payload: Any) -> ChatRole:
    """Build a role from a Telegram ``ChatMember`` payload.

    Raises ``ValueError`` for payloads without a user or with an unknown
    status.
    """
    if not isinstance(payload, dict):
        raise ValueError("chat member payload must be an object")
    user = TelegramUser.from_payload(payload.get("user"))
    if user is None:
        raise ValueError("chat member payload has no user")
    status = payload.get("status")
    if status == "creator":
        return Owner(user=user)
    if status == "administrator":
        return Administrator(
            user=user,
            can_be_edited=bool(payload.get("can_be_edited", False)),
            can_promote_members=bool(payload.get("can_promote_members", False)),
            can_invite_users=bool(payload.get("can_invite_users", False)),
            is_anonymous=bool(payload.get("is_anonymous", False)),
        )
    if status == "member":
        return Member(user=user)
    if status == "restricted":
        return Restricted(user=user)
    if status == "left":
        return Left(user=user)
    if status == "kicked":
        return Banned(user=user)
    raise ValueError(f"unknown chat member status: {status!r}")


@dataclass(frozen=True)
class RoleSnapshot:
    """The bot's and the acting principal's roles in one chat."""

    bot: ChatRole
    sender: ChatRole

    def with_sender(self, sender: ChatRole) -> "RoleSnapshot":
        return dataclasses.replace(self, sender=sender)
