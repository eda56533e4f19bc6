"""Webhook transport: an HTTP endpoint Telegram pushes updates to."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from fastapi import FastAPI, HTTPException, Request, Response

from ..core.logging_utils import log_event
from .client import TelegramBotClient

WEBHOOK_SETTLE_SECONDS = 0.5

UpdateSink = Callable[[dict[str, Any]], None]


def create_webhook_app(
    path_token: str,
    submit: UpdateSink,
    *,
    logger: Optional[logging.Logger] = None,
) -> FastAPI:
    """Build the webhook app.

    ``POST /<path_token>`` hands each update to ``submit`` and answers at
    once; handling happens outside the request. ``GET /health`` answers 204.
    """
    log = logger or logging.getLogger(__name__)
    app = FastAPI(redirect_slashes=False, docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/health", status_code=204)
    async def health() -> Response:
        return Response(status_code=204)

    @app.post(f"/{path_token}")
    async def receive_update(request: Request) -> dict[str, bool]:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid JSON body") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="update must be an object")
        log_event(
            log,
            logging.DEBUG,
            "webhook.update.received",
            update_id=payload.get("update_id"),
        )
        submit(payload)
        return {"ok": True}

    return app


async def setup_webhook(
    client: TelegramBotClient,
    *,
    url_base: str,
    path_token: str,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Point Telegram at ``<url_base>/<path_token>`` and return the URL."""
    log = logger or logging.getLogger(__name__)
    url = f"{url_base.rstrip('/')}/{path_token}"
    await client.delete_webhook()
    await asyncio.sleep(WEBHOOK_SETTLE_SECONDS)
    await client.set_webhook(url)
    log_event(log, logging.INFO, "webhook.registered", url_base=url_base)
    return url
