"""Process-wide collaborators injected into every conversation context."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Any, Optional, Protocol

from ..telegram.models import TelegramUser
from .debug_channel import DebugChannel
from .titles import TitleStore

DEFAULT_PROMOTION_SETTLE_SECONDS = 0.5
MIN_PROMOTION_SETTLE_SECONDS = 0.5
MAX_PROMOTION_SETTLE_SECONDS = 1.5


class ChatPlatform(Protocol):
    """The Telegram capabilities the core relies on."""

    async def get_me(self) -> dict[str, Any]: ...

    async def get_chat_member(self, chat_id: int, user_id: int) -> dict[str, Any]: ...

    async def get_chat_administrators(self, chat_id: int) -> list[dict[str, Any]]: ...

    async def promote_chat_member(
        self, chat_id: int, user_id: int, **rights: bool
    ) -> bool: ...

    async def set_chat_administrator_custom_title(
        self, chat_id: int, user_id: int, custom_title: str
    ) -> bool: ...

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to_message_id: Optional[int] = None,
        parse_mode: Optional[str] = None,
    ) -> dict[str, Any]: ...


def make_run_hash(token: str, *, now: Optional[float] = None) -> str:
    """Per-run identifier used in operational notices and the webhook path."""
    started = time.time() if now is None else now
    digest = hashlib.sha256(f"{token}:{started!r}".encode("utf-8")).hexdigest()
    return digest[:16].upper()


def clamp_settle_seconds(value: float) -> float:
    return min(max(float(value), MIN_PROMOTION_SETTLE_SECONDS), MAX_PROMOTION_SETTLE_SECONDS)


class BotServices:
    def __init__(
        self,
        *,
        client: ChatPlatform,
        store: TitleStore,
        debug: DebugChannel,
        run_hash: str,
        promotion_settle_seconds: float = DEFAULT_PROMOTION_SETTLE_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.debug = debug
        self.run_hash = run_hash
        self.promotion_settle_seconds = promotion_settle_seconds
        self.logger = logger or logging.getLogger("golden_axe")
        self._identity: Optional[TelegramUser] = None
        self._identity_lock = asyncio.Lock()

    async def bot_identity(self) -> TelegramUser:
        """The bot's own user, fetched once with ``getMe`` and cached."""
        if self._identity is not None:
            return self._identity
        async with self._identity_lock:
            if self._identity is None:
                payload = await self.client.get_me()
                identity = TelegramUser.from_payload(payload)
                if identity is None:
                    raise ValueError("getMe returned no user")
                self._identity = identity
        return self._identity
