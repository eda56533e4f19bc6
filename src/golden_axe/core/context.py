"""Conversation contexts: one per inbound command.

A context starts as `UnresolvedContext`, which can only do cheap checks that
need no network round trip (is this a group, reply to the sender, read the
title listing). Anything that depends on who holds which role goes through
`UnresolvedContext.resolve`, which fetches the bot's and the sender's chat
membership concurrently and returns a `ResolvedContext`. Permission checks
and privileged actions exist only on `ResolvedContext`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from ..telegram.constants import DONE_TEXT
from ..telegram.errors import TelegramAPIError
from ..telegram.models import TelegramMessage, TelegramUser
from . import permissions
from .anonymity import is_anonymous_admin_alias
from .exceptions import (
    NoSenderError,
    NotInGroupError,
    PlatformActionError,
    PermissionDeniedError,
    PlatformUnavailableError,
    TitleAlreadyInUseError,
    UnidentifiedAnonymousSenderError,
)
from .logging_utils import log_event
from .permissions import EditPlan
from .roles import Administrator, ChatRole, RoleSnapshot, parse_chat_member
from .services import BotServices
from .titles import TitleRecord


@dataclass(frozen=True)
class NukeReport:
    attempted: int
    succeeded: int


class _ContextBase:
    def __init__(
        self,
        services: BotServices,
        message: TelegramMessage,
        sender: TelegramUser,
    ) -> None:
        self._services = services
        self._message = message
        self._sender = sender

    @property
    def services(self) -> BotServices:
        return self._services

    @property
    def message(self) -> TelegramMessage:
        return self._message

    @property
    def chat_id(self) -> int:
        return self._message.chat.id

    @property
    def sender(self) -> TelegramUser:
        return self._sender

    @property
    def _logger(self) -> logging.Logger:
        return self._services.logger

    def assert_in_group(self) -> None:
        if not self._message.chat.is_group:
            raise NotInGroupError()

    async def reply(self, text: str, *, parse_mode: Optional[str] = "HTML") -> None:
        await self._services.client.send_message(
            self.chat_id,
            text,
            reply_to_message_id=self._message.message_id,
            parse_mode=parse_mode,
        )

    async def done(self) -> None:
        await self.reply(DONE_TEXT)

    async def list_titles(self) -> list[TitleRecord]:
        return await self._services.store.list_by_chat(self.chat_id)

    async def _platform_call(self, action: str, call: Awaitable[Any]) -> Any:
        try:
            return await call
        except TelegramAPIError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "context.platform_call.failed",
                action=action,
                chat_id=self.chat_id,
                exc=exc,
            )
            raise PlatformActionError(
                f"{action} failed in chat {self.chat_id}: {exc}",
                user_message=f"Failed to {action}",
            ) from exc


class UnresolvedContext(_ContextBase):
    @classmethod
    def create(cls, services: BotServices, message: TelegramMessage) -> "UnresolvedContext":
        if message.from_user is None:
            raise NoSenderError()
        return cls(services, message, message.from_user)

    async def resolve(self) -> "ResolvedContext":
        """Fetch the bot's and the sender's membership together.

        Both lookups must succeed; any failure becomes
        `PlatformUnavailableError`.
        """
        client = self._services.client

        async def _bot_member() -> dict[str, Any]:
            identity = await self._services.bot_identity()
            return await client.get_chat_member(self.chat_id, identity.id)

        try:
            bot_payload, sender_payload = await asyncio.gather(
                _bot_member(),
                client.get_chat_member(self.chat_id, self._sender.id),
            )
            snapshot = RoleSnapshot(
                bot=parse_chat_member(bot_payload),
                sender=parse_chat_member(sender_payload),
            )
        except (TelegramAPIError, ValueError) as exc:
            raise PlatformUnavailableError(
                f"Failed to fetch chat members of chat {self.chat_id}: {exc}"
            ) from exc
        log_event(
            self._logger,
            logging.DEBUG,
            "context.resolved",
            chat_id=self.chat_id,
            sender_id=self._sender.id,
            bot_role=type(snapshot.bot).__name__,
            sender_role=type(snapshot.sender).__name__,
        )
        return ResolvedContext(self._services, self._message, self._sender, snapshot)


class ResolvedContext(_ContextBase):
    def __init__(
        self,
        services: BotServices,
        message: TelegramMessage,
        sender: TelegramUser,
        snapshot: RoleSnapshot,
        *,
        is_anonymous: bool = False,
    ) -> None:
        super().__init__(services, message, sender)
        self._snapshot = snapshot
        self._is_anonymous = is_anonymous

    @property
    def snapshot(self) -> RoleSnapshot:
        return self._snapshot

    @property
    def is_anonymous(self) -> bool:
        """Whether the sender was identified behind the anonymous-admin alias."""
        return self._is_anonymous

    @property
    def sender_is_alias(self) -> bool:
        return not self._is_anonymous and is_anonymous_admin_alias(self._sender)

    async def resolve_anonymous_identity(self) -> "ResolvedContext":
        """Swap the anonymous-admin alias for the user behind its title.

        Telegram hides anonymous admins behind a shared alias account but
        keeps their custom title as the message's author signature, which is
        looked up in the title store. Non-anonymous senders are returned as
        they are.
        """
        if not self.sender_is_alias:
            return self
        signature = self._message.author_signature
        if not signature:
            raise UnidentifiedAnonymousSenderError(
                "You don't have a title. Unable to identify you."
            )
        record = await self._services.store.get_by_title(self.chat_id, signature)
        if record is None:
            raise UnidentifiedAnonymousSenderError(
                "I don't recognize you. Please contact admin to manually "
                "de-anonymous."
            )
        real_sender = TelegramUser(
            id=record.user_id, is_bot=False, first_name=record.title
        )
        log_event(
            self._logger,
            logging.INFO,
            "context.anonymous_identified",
            chat_id=self.chat_id,
            user_id=record.user_id,
        )
        return ResolvedContext(
            self._services,
            self._message,
            real_sender,
            self._snapshot,
            is_anonymous=True,
        )

    def with_substituted_sender(self, target: ChatRole) -> "ResolvedContext":
        """Act on ``target`` instead of the sender, keeping the bot's role."""
        return ResolvedContext(
            self._services,
            self._message,
            target.user,
            self._snapshot.with_sender(target),
        )

    async def fetch_member(self, user_id: int) -> ChatRole:
        try:
            payload = await self._services.client.get_chat_member(self.chat_id, user_id)
            return parse_chat_member(payload)
        except (TelegramAPIError, ValueError) as exc:
            raise PlatformUnavailableError(
                f"Failed to fetch member {user_id} of chat {self.chat_id}: {exc}"
            ) from exc

    async def with_fetched_sender(self) -> "ResolvedContext":
        """Refresh the principal's role from the platform.

        Used after anonymous identification, when the snapshot still holds
        the alias account's role.
        """
        role = await self.fetch_member(self._sender.id)
        return ResolvedContext(
            self._services,
            self._message,
            self._sender,
            self._snapshot.with_sender(role),
            is_anonymous=self._is_anonymous,
        )

    def assert_not_anonymous(self) -> None:
        if self._is_anonymous or self.sender_is_alias:
            raise PermissionDeniedError("I can't edit you because of you're anonymous")

    def assert_bot_is_admin(self) -> None:
        permissions.assert_bot_is_admin(self._snapshot)

    def assert_bot_can_promote(self) -> None:
        permissions.assert_bot_can_promote(self._snapshot)

    def assert_bot_anonymous(self) -> None:
        permissions.assert_bot_anonymous(self._snapshot)

    def assert_sender_is_admin(self) -> None:
        permissions.assert_sender_is_admin(
            self._snapshot, sender_is_anonymous=self._is_anonymous
        )

    def assert_sender_is_owner(self) -> None:
        permissions.assert_sender_is_owner(self._snapshot)

    def assert_editable(self) -> None:
        permissions.assert_editable(self._snapshot)

    async def prepare_for_edit(self) -> None:
        """Make sure the sender is an administrator the bot may edit.

        Plain members get promoted first, followed by one fixed wait for the
        promotion to propagate; there is no retry if the next call still
        fails.
        """
        if permissions.plan_edit(self._snapshot) is EditPlan.PROMOTE_FIRST:
            await self.promote()
            await asyncio.sleep(self._services.promotion_settle_seconds)

    async def promote(self) -> None:
        await self._platform_call(
            "promote",
            self._services.client.promote_chat_member(
                self.chat_id, self._sender.id, can_invite_users=True
            ),
        )

    async def demote(self) -> None:
        await self._demote_user(self._sender.id)

    async def _demote_user(self, user_id: int) -> None:
        await self._platform_call(
            "demote",
            self._services.client.promote_chat_member(self.chat_id, user_id),
        )

    async def make_anonymous(self) -> None:
        await self._platform_call(
            "make anonymous",
            self._services.client.promote_chat_member(
                self.chat_id, self._sender.id, can_invite_users=True, is_anonymous=True
            ),
        )

    async def set_custom_title(self, title: str) -> None:
        await self._platform_call(
            "set title",
            self._services.client.set_chat_administrator_custom_title(
                self.chat_id, self._sender.id, title
            ),
        )

    async def clear_custom_title(self) -> None:
        await self._platform_call(
            "remove title",
            self._services.client.set_chat_administrator_custom_title(
                self.chat_id, self._sender.id, ""
            ),
        )

    async def title_record(self) -> Optional[TitleRecord]:
        return await self._services.store.get_by_user(self.chat_id, self._sender.id)

    async def assert_title_available(self, title: str) -> None:
        holder = await self._services.store.get_by_title(self.chat_id, title)
        if holder is not None and holder.user_id != self._sender.id:
            raise TitleAlreadyInUseError(title, holder_id=holder.user_id)

    async def save_title(self, title: str) -> TitleRecord:
        return await self._services.store.insert_title(
            self.chat_id, self._sender.id, title
        )

    async def remove_title(self) -> Optional[TitleRecord]:
        return await self._services.store.remove_by_user(self.chat_id, self._sender.id)

    async def nuke(self) -> NukeReport:
        """Demote every administrator the bot is allowed to edit.

        Each member's title record is removed before its demotion is issued;
        members are processed concurrently and one failure does not stop the
        others. Store removals are not rolled back when a demotion fails.
        """
        payloads = await self._platform_call(
            "list administrators",
            self._services.client.get_chat_administrators(self.chat_id),
        )
        targets: list[Administrator] = []
        for payload in payloads:
            try:
                role = parse_chat_member(payload)
            except ValueError as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "context.nuke.bad_member",
                    chat_id=self.chat_id,
                    exc=exc,
                )
                continue
            if isinstance(role, Administrator) and role.can_be_edited:
                targets.append(role)

        results = await asyncio.gather(
            *(self._nuke_member(target.user.id) for target in targets),
            return_exceptions=True,
        )
        succeeded = 0
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                log_event(
                    self._logger,
                    logging.WARNING,
                    "context.nuke.member_failed",
                    chat_id=self.chat_id,
                    user_id=target.user.id,
                    exc=result,
                )
            else:
                succeeded += 1
        report = NukeReport(attempted=len(targets), succeeded=succeeded)
        log_event(
            self._logger,
            logging.INFO,
            "context.nuke.finished",
            chat_id=self.chat_id,
            attempted=report.attempted,
            succeeded=report.succeeded,
        )
        return report

    async def _nuke_member(self, user_id: int) -> None:
        await self._services.store.remove_by_user(self.chat_id, user_id)
        await self._demote_user(user_id)
