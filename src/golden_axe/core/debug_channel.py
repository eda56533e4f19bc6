"""Operational notification channel.

Messages go to a maintainers' chat through a background worker so that a
slow or failing send never delays command handling. When no chat is
configured, messages are only logged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

from .logging_utils import log_event

_STOP = object()


class MessageSender(Protocol):
    async def send_message(
        self, chat_id: int, text: str, *, parse_mode: Optional[str] = None
    ) -> Any: ...


class DebugChannel:
    def __init__(
        self,
        sender: MessageSender,
        chat_id: Optional[int],
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._sender = sender
        self._chat_id = chat_id
        self._logger = logger or logging.getLogger(__name__)
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None

    @property
    def enabled(self) -> bool:
        return self._chat_id is not None

    def start(self) -> None:
        if self._chat_id is None:
            log_event(
                self._logger,
                logging.WARNING,
                "debug_channel.disabled",
                reason="debug_chat not set, debug messages will only be logged",
            )
            return
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())
            log_event(
                self._logger,
                logging.INFO,
                "debug_channel.started",
                chat_id=self._chat_id,
            )

    def send(self, text: str) -> None:
        if self._worker is None:
            self._logger.info("%s", text)
            return
        self._logger.warning("%s", text)
        self._queue.put_nowait(text)

    async def close(self) -> None:
        """Deliver everything already queued, then stop the worker."""
        if self._worker is None:
            return
        self._queue.put_nowait(_STOP)
        await self._worker
        self._worker = None

    async def _run(self) -> None:
        assert self._chat_id is not None
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            try:
                await self._sender.send_message(self._chat_id, item, parse_mode="HTML")
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "debug_channel.send_failed",
                    chat_id=self._chat_id,
                    exc=exc,
                )
