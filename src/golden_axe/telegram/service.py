from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any, Optional

import uvicorn

from ..core.config import BotConfig, BotMode
from ..core.context import UnresolvedContext
from ..core.debug_channel import DebugChannel
from ..core.logging_utils import log_event
from ..core.retry import retry_transient, transient_retrying
from ..core.services import BotServices, make_run_hash
from ..core.titles import TitleStore
from .boundary import handle_command_error
from .client import TelegramBotClient
from .command_parsing import parse_command
from .commands import bot_commands, find_command
from .models import TelegramMessage, TelegramUpdate, parse_update
from .webhook import create_webhook_app, setup_webhook

POLL_RETRY_MAX_WAIT_SECONDS = 60.0


class TelegramBotService:
    """Receives updates and runs one command handler task per update."""

    def __init__(
        self,
        config: BotConfig,
        *,
        logger: logging.Logger,
        client: Optional[TelegramBotClient] = None,
        store: Optional[TitleStore] = None,
        run_hash: Optional[str] = None,
    ) -> None:
        self._config = config
        self._logger = logger
        self._client = (
            client
            if client is not None
            else TelegramBotClient(
                config.token, timeout_seconds=config.request_timeout_seconds
            )
        )
        self._owns_client = client is None
        self._store = store if store is not None else TitleStore(config.state_file)
        self._owns_store = store is None
        self._debug = DebugChannel(self._client, config.debug_chat, logger=logger)
        self._services = BotServices(
            client=self._client,
            store=self._store,
            debug=self._debug,
            run_hash=run_hash or make_run_hash(config.token),
            promotion_settle_seconds=config.promotion_settle_seconds,
            logger=logger,
        )
        self._bot_username: Optional[str] = None
        self._stop = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def services(self) -> BotServices:
        return self._services

    def request_stop(self) -> None:
        if not self._stop.is_set():
            log_event(self._logger, logging.INFO, "telegram.bot.stop_requested")
        self._stop.set()

    async def run_forever(self) -> None:
        await self._store.initialize()
        try:
            identity = await self._services.bot_identity()
            if not identity.username:
                raise ValueError("the bot account has no username")
            self._bot_username = identity.username
            log_event(
                self._logger,
                logging.INFO,
                "telegram.bot.logged_in",
                bot_id=identity.id,
                username=identity.username,
                mode=self._config.mode.value,
                state_file=str(self._config.state_file),
            )
            await self._sync_commands_on_startup()
            self._debug.start()
            self._debug.send(
                f"Golden Axe <b>Online</b>, running as @{identity.username} "
                f"(#{self._services.run_hash})"
            )
            self._install_signal_handlers()
            if self._config.mode is BotMode.WEBHOOK:
                await self._run_webhook()
            else:
                await self._run_polling()
            await self.wait_idle()
            self._debug.send(f"Golden Axe <b>Offline</b> (#{self._services.run_hash})")
        finally:
            self._remove_signal_handlers()
            await self._shutdown()

    def submit(self, payload: dict[str, Any]) -> None:
        """Schedule handling of one raw update without waiting for it."""
        update = parse_update(payload)
        if update is None or update.message is None:
            return
        task = asyncio.create_task(self._handle_update(update))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _handle_update(self, update: TelegramUpdate) -> None:
        message = update.message
        if message is None:
            return
        parsed = parse_command(
            message.text, entities=message.entities, bot_username=self._bot_username
        )
        if parsed is None:
            return
        spec = find_command(parsed.name)
        if spec is None:
            return
        log_event(
            self._logger,
            logging.INFO,
            "command.received",
            command=spec.name,
            chat_id=message.chat.id,
            user_id=message.from_user.id if message.from_user else None,
            update_id=update.update_id,
        )
        try:
            ctx = UnresolvedContext.create(self._services, message)
            if spec.requires_group:
                ctx.assert_in_group()
            await spec.handler(ctx, parsed.args)
        except Exception as exc:
            await handle_command_error(
                exc,
                reply=lambda text: self._reply_plain(message, text),
                debug=self._debug,
                logger=self._logger,
                command=spec.name,
                chat_id=message.chat.id,
            )

    async def _reply_plain(self, message: TelegramMessage, text: str) -> None:
        await self._client.send_message(
            message.chat.id, text, reply_to_message_id=message.message_id
        )

    @retry_transient(max_attempts=3, base_wait=0.5, max_wait=5.0)
    async def _set_commands(self, commands: list[tuple[str, str]]) -> None:
        await self._client.set_my_commands(commands)

    async def _sync_commands_on_startup(self) -> None:
        commands = bot_commands()
        try:
            await self._set_commands(commands)
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "telegram.commands.sync_failed",
                command_count=len(commands),
                exc=exc,
            )
            return
        log_event(
            self._logger,
            logging.INFO,
            "telegram.commands.synced",
            command_count=len(commands),
        )

    async def _run_polling(self) -> None:
        async for attempt in transient_retrying(max_attempts=None):
            with attempt:
                await self._client.delete_webhook()
        log_event(self._logger, logging.INFO, "telegram.polling.started")
        offset: Optional[int] = None
        stop_task = asyncio.create_task(self._stop.wait())
        try:
            while not self._stop.is_set():
                poll_task = asyncio.create_task(self._fetch_updates(offset))
                await asyncio.wait(
                    {poll_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
                )
                if not poll_task.done():
                    poll_task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await poll_task
                    break
                for payload in poll_task.result():
                    update_id = payload.get("update_id")
                    if isinstance(update_id, int) and not isinstance(update_id, bool):
                        offset = max(offset or 0, update_id + 1)
                    self.submit(payload)
        finally:
            stop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stop_task
        log_event(self._logger, logging.INFO, "telegram.polling.stopped")

    async def _fetch_updates(self, offset: Optional[int]) -> list[dict[str, Any]]:
        updates: list[dict[str, Any]] = []
        async for attempt in transient_retrying(
            max_attempts=None, max_wait=POLL_RETRY_MAX_WAIT_SECONDS
        ):
            with attempt:
                updates = await self._client.get_updates(
                    offset=offset, timeout=self._config.poll_timeout_seconds
                )
        return updates

    async def _run_webhook(self) -> None:
        url_base = self._config.webhook_url_base
        if url_base is None:
            raise ValueError("webhook mode requires a domain")
        run_hash = self._services.run_hash
        app = create_webhook_app(run_hash, self.submit, logger=self._logger)
        await setup_webhook(
            self._client, url_base=url_base, path_token=run_hash, logger=self._logger
        )
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=self._config.webhook_host,
                port=self._config.webhook_port,
                log_config=None,
                access_log=False,
            )
        )
        log_event(
            self._logger,
            logging.INFO,
            "telegram.webhook.serving",
            host=self._config.webhook_host,
            port=self._config.webhook_port,
        )
        serve_task = asyncio.create_task(server.serve())
        stop_task = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait(
                {serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            server.should_exit = True
            stop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stop_task
            await serve_task

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signum, self.request_stop)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signum)

    async def _shutdown(self) -> None:
        with contextlib.suppress(Exception):
            await self._debug.close()
        if self._owns_store:
            with contextlib.suppress(Exception):
                await self._store.close()
        if self._owns_client:
            with contextlib.suppress(Exception):
                await self._client.close()


async def probe_bot(config: BotConfig, *, timeout_seconds: float = 10.0) -> dict[str, Any]:
    """Call ``getMe`` once; used by the ``health`` command."""
    async with TelegramBotClient(
        config.token, timeout_seconds=timeout_seconds, max_retries=0
    ) as client:
        return await asyncio.wait_for(client.get_me(), timeout=timeout_seconds)
