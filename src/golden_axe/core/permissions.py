"""Permission rules over a `RoleSnapshot`.

Every function here is pure: it either returns (accept) or raises
`PermissionDeniedError` with the reason shown to the user.
"""

from __future__ import annotations

from enum import Enum

from .exceptions import PermissionDeniedError
from .roles import (
    Administrator,
    Member,
    Owner,
    RoleSnapshot,
    is_admin_role,
    role_name,
)


class EditPlan(str, Enum):
    """What `prepare_for_edit` must do before the sender can be edited."""

    EDIT_IN_PLACE = "edit_in_place"
    PROMOTE_FIRST = "promote_first"


def assert_bot_is_admin(snapshot: RoleSnapshot) -> None:
    if is_admin_role(snapshot.bot):
        return
    raise PermissionDeniedError(
        "I am not an admin, please contact admin "
        f"(Currently {role_name(snapshot.bot)})"
    )


def assert_bot_can_promote(snapshot: RoleSnapshot) -> None:
    bot = snapshot.bot
    if (
        isinstance(bot, Administrator)
        and bot.can_promote_members
        and bot.can_invite_users
    ):
        return
    raise PermissionDeniedError(
        "I don't have the privilege to promote others, please contact admin"
    )


def assert_bot_anonymous(snapshot: RoleSnapshot) -> None:
    bot = snapshot.bot
    if isinstance(bot, Administrator) and bot.can_promote_members and bot.is_anonymous:
        return
    raise PermissionDeniedError(
        "I don't have the privilege to make others anonymous, please contact "
        "admin (I need to be anonymous first to make others anonymous)"
    )


def assert_sender_is_admin(
    snapshot: RoleSnapshot, *, sender_is_anonymous: bool = False
) -> None:
    if sender_is_anonymous or is_admin_role(snapshot.sender):
        return
    raise PermissionDeniedError(
        "You are not admin, please contact admin "
        f"(Currently {role_name(snapshot.sender)})"
    )


def assert_sender_is_owner(snapshot: RoleSnapshot) -> None:
    if isinstance(snapshot.sender, Owner):
        return
    raise PermissionDeniedError(
        "Only the owner of this chat can do this "
        f"(Currently {role_name(snapshot.sender)})"
    )


def assert_editable(snapshot: RoleSnapshot) -> None:
    """Whether the bot may alter the sender's privileges.

    Accepted when the bot owns the chat, or the bot is an administrator and
    the sender is either a plain member or an administrator the bot itself
    promoted.
    """
    bot, sender = snapshot.bot, snapshot.sender
    if isinstance(bot, Owner):
        return
    if not isinstance(bot, Administrator):
        raise PermissionDeniedError(
            "I'm not an admin, please promote me with promotion privilege first"
        )
    if isinstance(sender, Member):
        return
    if isinstance(sender, Administrator):
        if sender.can_be_edited:
            return
        raise PermissionDeniedError(
            "I can't change your info (are you promoted by others?)"
        )
    raise PermissionDeniedError(
        f"I can't edit you because of your status({role_name(sender)})"
    )


def plan_edit(snapshot: RoleSnapshot) -> EditPlan:
    """Decide how to make the sender editable; the caller performs the I/O."""
    sender = snapshot.sender
    if isinstance(sender, Administrator):
        assert_editable(snapshot)
        return EditPlan.EDIT_IN_PLACE
    if isinstance(sender, Member):
        assert_bot_can_promote(snapshot)
        return EditPlan.PROMOTE_FIRST
    raise PermissionDeniedError(
        f"I can't edit you because of your status({role_name(sender)})"
    )
