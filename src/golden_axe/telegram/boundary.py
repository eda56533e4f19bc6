from __future__ import annotations

import html
import logging
from typing import Awaitable, Callable, Optional

from ..core.debug_channel import DebugChannel
from ..core.exceptions import GoldenAxeError
from ..core.logging_utils import log_event
from .constants import GENERIC_FAILURE_TEXT

Reply = Callable[[str], Awaitable[None]]


async def handle_command_error(
    exc: BaseException,
    *,
    reply: Reply,
    debug: DebugChannel,
    logger: logging.Logger,
    command: str,
    chat_id: Optional[int] = None,
) -> None:
    """Turn a failed command into a chat reply.

    Rejections (bad input, denied permission, conflicts) are answered with
    their message as is. Platform and storage failures, and anything not in
    the golden-axe taxonomy, also go to the debug channel; the chat only sees
    a message without internal detail.
    """
    if isinstance(exc, GoldenAxeError) and not exc.escalate:
        log_event(
            logger,
            logging.INFO,
            "command.rejected",
            command=command,
            chat_id=chat_id,
            reason=exc.user_message,
            error_type=type(exc).__name__,
        )
        await _safe_reply(reply, exc.user_message, logger=logger, command=command)
        return

    if isinstance(exc, GoldenAxeError):
        user_text = exc.user_message
        level = logging.WARNING
    else:
        user_text = GENERIC_FAILURE_TEXT
        level = logging.ERROR
    log_event(logger, level, "command.failed", command=command, chat_id=chat_id, exc=exc)
    debug.send(
        f"Command <code>/{html.escape(command)}</code> failed in chat "
        f"<code>{chat_id}</code>: "
        f"<code>{html.escape(f'{type(exc).__name__}: {exc}')}</code>"
    )
    await _safe_reply(reply, user_text, logger=logger, command=command)


async def _safe_reply(
    reply: Reply, text: str, *, logger: logging.Logger, command: str
) -> None:
    try:
        await reply(text)
    except Exception as exc:
        log_event(
            logger,
            logging.WARNING,
            "command.reply_failed",
            command=command,
            exc=exc,
        )
