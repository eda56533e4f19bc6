"""Command handlers and the command registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..core.anonymity import is_anonymous_admin_alias
from ..core.context import ResolvedContext, UnresolvedContext
from ..core.exceptions import (
    EmptyTitleError,
    InputError,
    PermissionDeniedError,
    TitleAlreadyInUseError,
    TitleNotFoundError,
)
from ..core.roles import Administrator
from ..core.titles import TitleRecord
from .models import TelegramMessage, TelegramUser

CommandHandler = Callable[[UnresolvedContext, str], Awaitable[None]]
TargetPicker = Callable[[ResolvedContext], Awaitable[int]]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    handler: CommandHandler
    requires_group: bool = True


async def _principal(ctx: UnresolvedContext) -> ResolvedContext:
    """Resolve roles and, for anonymous admins, the user behind the alias."""
    resolved = await (await ctx.resolve()).resolve_anonymous_identity()
    if resolved.is_anonymous:
        resolved = await resolved.with_fetched_sender()
    return resolved


async def handle_help(ctx: UnresolvedContext, args: str) -> None:
    await ctx.reply(render_help(), parse_mode=None)


async def handle_title(ctx: UnresolvedContext, args: str) -> None:
    title = args.strip()
    if not title:
        raise EmptyTitleError()
    resolved = await ctx.resolve()
    resolved.assert_not_anonymous()
    await resolved.assert_title_available(title)
    await resolved.prepare_for_edit()
    await resolved.set_custom_title(title)
    try:
        await resolved.save_title(title)
    except TitleAlreadyInUseError:
        # Another claim of the same title was stored since the check above.
        await resolved.clear_custom_title()
        raise
    await resolved.done()


async def handle_untitle(ctx: UnresolvedContext, args: str) -> None:
    title = args.strip()
    if title:
        await _force_untitle(ctx, title)
        return
    resolved = await ctx.resolve()
    resolved.assert_not_anonymous()
    resolved.assert_editable()
    if isinstance(resolved.snapshot.sender, Administrator):
        await resolved.clear_custom_title()
    await resolved.remove_title()
    await resolved.done()


async def _force_untitle(ctx: UnresolvedContext, title: str) -> None:
    resolved = await _principal(ctx)
    resolved.assert_sender_is_owner()
    record = await resolved.services.store.get_by_title(resolved.chat_id, title)
    if record is None:
        raise TitleNotFoundError(title)
    holder = resolved.with_substituted_sender(
        await resolved.fetch_member(record.user_id)
    )
    if isinstance(holder.snapshot.sender, Administrator):
        holder.assert_editable()
        await holder.clear_custom_title()
    await holder.services.store.remove_by_title(holder.chat_id, title)
    await holder.done()


async def handle_demote(ctx: UnresolvedContext, args: str) -> None:
    target = args.strip()
    reply_to = ctx.message.reply_to
    if target:
        await _demote_target(
            ctx, lambda resolved: _user_id_from_argument(resolved, target)
        )
        return
    if reply_to is not None and reply_to.from_user is not None:
        replied, author = reply_to, reply_to.from_user
        await _demote_target(
            ctx, lambda resolved: _user_id_from_reply(resolved, replied, author)
        )
        return
    resolved = await ctx.resolve()
    resolved.assert_not_anonymous()
    resolved.assert_editable()
    resolved.assert_bot_can_promote()
    await resolved.demote()
    await resolved.remove_title()
    await resolved.done()


async def _demote_target(ctx: UnresolvedContext, pick_target: TargetPicker) -> None:
    resolved = await _principal(ctx)
    resolved.assert_sender_is_owner()
    user_id = await pick_target(resolved)
    victim = resolved.with_substituted_sender(await resolved.fetch_member(user_id))
    victim.assert_editable()
    victim.assert_bot_can_promote()
    await victim.demote()
    await victim.remove_title()
    await victim.done()


async def _user_id_from_argument(ctx: ResolvedContext, target: str) -> int:
    """A stored title wins over reading the argument as a user id."""
    record = await ctx.services.store.get_by_title(ctx.chat_id, target)
    if record is not None:
        return record.user_id
    try:
        return int(target)
    except ValueError:
        raise TitleNotFoundError(target) from None


async def _user_id_from_reply(
    ctx: ResolvedContext, reply_to: TelegramMessage, author: TelegramUser
) -> int:
    signature = reply_to.author_signature
    if signature and is_anonymous_admin_alias(author):
        record = await ctx.services.store.get_by_title(ctx.chat_id, signature)
        if record is None:
            raise TitleNotFoundError(signature)
        return record.user_id
    return author.id


async def handle_anonymous(ctx: UnresolvedContext, args: str) -> None:
    resolved = await ctx.resolve()
    resolved.assert_bot_anonymous()
    if resolved.sender_is_alias:
        raise PermissionDeniedError("You are already anonymous")
    if await resolved.title_record() is None:
        raise InputError("Before making anonymous, use /title first to register")
    await resolved.prepare_for_edit()
    await resolved.make_anonymous()
    await resolved.done()


async def handle_deanonymous(ctx: UnresolvedContext, args: str) -> None:
    resolved = await (await ctx.resolve()).resolve_anonymous_identity()
    if not resolved.is_anonymous:
        raise PermissionDeniedError("You are not anonymous")
    resolved.assert_bot_can_promote()
    await resolved.promote()
    await resolved.done()


async def handle_nuke(ctx: UnresolvedContext, args: str) -> None:
    resolved = await _principal(ctx)
    resolved.assert_sender_is_owner()
    resolved.assert_bot_can_promote()
    report = await resolved.nuke()
    await resolved.reply(
        f"Demoted {report.succeeded} of {report.attempted} administrator(s)."
    )


async def handle_titles(ctx: UnresolvedContext, args: str) -> None:
    await ctx.reply(render_titles(ctx.chat_id, await ctx.list_titles()))


def render_titles(chat_id: int, records: list[TitleRecord]) -> str:
    if not records:
        return "No titles found."
    lines = [f"<code>in Chat({chat_id}):</code>"]
    lines.extend(record.render_html() for record in records)
    return "\n".join(lines)


COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("help", "Display this text.", handle_help, requires_group=False),
    CommandSpec("title", "Change my title.", handle_title),
    CommandSpec(
        "untitle",
        "Remove my title (owner: /untitle <title> removes anyone's).",
        handle_untitle,
    ),
    CommandSpec(
        "demote",
        "Demote me and remove my title (owner: reply or /demote <title|id>).",
        handle_demote,
    ),
    CommandSpec("anonymous", "Make me anonymous.", handle_anonymous),
    CommandSpec("deanonymous", "Make me un-anonymous.", handle_deanonymous),
    CommandSpec("nuke", "Demote every administrator I promoted (owner only).", handle_nuke),
    CommandSpec("titles", "Get all titles being used.", handle_titles),
)

_COMMANDS_BY_NAME = {spec.name: spec for spec in COMMANDS}


def find_command(name: str) -> Optional[CommandSpec]:
    return _COMMANDS_BY_NAME.get(name.lower())


def render_help() -> str:
    lines = ["These commands are supported:"]
    lines.extend(f"/{spec.name} - {spec.description}" for spec in COMMANDS)
    return "\n".join(lines)


def bot_commands() -> list[tuple[str, str]]:
    return [(spec.name, spec.description) for spec in COMMANDS]
