from __future__ import annotations

from ..telegram.models import TelegramUser

# Telegram posts messages of anonymous group administrators on behalf of this
# service account; the real sender id is never exposed.
ANONYMOUS_ADMIN_USERNAME = "GroupAnonymousBot"
ANONYMOUS_ADMIN_FIRST_NAME = "Group"


def is_anonymous_admin_alias(user: TelegramUser) -> bool:
    """Whether ``user`` is the alias Telegram shows for anonymous admins."""
    if user.username is not None:
        return user.username == ANONYMOUS_ADMIN_USERNAME
    return user.is_bot and user.first_name == ANONYMOUS_ADMIN_FIRST_NAME
