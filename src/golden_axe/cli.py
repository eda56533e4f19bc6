from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer

from .core.config import BotConfig, ConfigError, load_config
from .core.exceptions import StorageError
from .core.logging_utils import log_event, setup_rotating_logger
from .core.titles import TitleStore
from .telegram.errors import TelegramAPIError
from .telegram.service import TelegramBotService, probe_bot

app = typer.Typer(add_completion=False)


def get_version() -> str:
    import importlib.metadata

    try:
        return importlib.metadata.version("golden-axe")
    except Exception:
        return "unknown"


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def _require_config(path: Optional[Path]) -> BotConfig:
    try:
        return load_config(path or Path.cwd())
    except ConfigError as exc:
        raise_exit(str(exc), cause=exc)


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(f"golden-axe {get_version()}")
    raise typer.Exit(code=0)


@app.callback()
def _root(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    return


@app.command("start")
def start(
    path: Optional[Path] = typer.Option(
        None, "--path", help="Directory holding golden-axe.yml and .env"
    ),
) -> None:
    """Run the bot in the configured mode (poll or webhook)."""
    config = _require_config(path)
    logger = setup_rotating_logger("golden_axe.bot", config.log_level, config.log_file)
    log_event(
        logger,
        logging.INFO,
        "telegram.bot.starting",
        root=str(config.root),
        mode=config.mode.value,
    )

    async def _run() -> None:
        service = TelegramBotService(config, logger=logger)
        await service.run_forever()

    try:
        asyncio.run(_run())
    except (TelegramAPIError, StorageError, ValueError) as exc:
        log_event(logger, logging.ERROR, "telegram.bot.crashed", exc=exc)
        raise_exit(f"golden-axe stopped: {exc}", cause=exc)


@app.command("health")
def health(
    path: Optional[Path] = typer.Option(
        None, "--path", help="Directory holding golden-axe.yml and .env"
    ),
    timeout: float = typer.Option(5.0, "--timeout", help="Timeout (seconds)"),
) -> None:
    """Check that the token is accepted by calling getMe."""
    config = _require_config(path)
    timeout_seconds = max(float(timeout), 0.1)
    try:
        me = asyncio.run(probe_bot(config, timeout_seconds=timeout_seconds))
    except (TelegramAPIError, asyncio.TimeoutError) as exc:
        raise_exit(f"Telegram health check failed: {exc}", cause=exc)
    typer.echo(f"ok: @{me.get('username') or me.get('id')}")


@app.command("titles")
def titles(
    chat_id: int = typer.Option(..., "--chat", help="Chat id to list titles for"),
    path: Optional[Path] = typer.Option(
        None, "--path", help="Directory holding golden-axe.yml and .env"
    ),
) -> None:
    """Print the titles stored for a chat."""
    config = _require_config(path)
    if not config.state_file.exists():
        raise_exit(f"No title store at {config.state_file}")

    async def _run() -> str:
        store = TitleStore(config.state_file)
        try:
            records = await store.list_by_chat(chat_id)
        finally:
            await store.close()
        if not records:
            return "No titles found."
        return "\n".join(f"{record.title}\t{record.user_id}" for record in records)

    try:
        typer.echo(asyncio.run(_run()))
    except StorageError as exc:
        raise_exit(str(exc), cause=exc)


def main() -> None:
    """Entrypoint for CLI execution."""
    app()


if __name__ == "__main__":
    main()
