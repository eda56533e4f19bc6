from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Iterable, Optional, Sequence

import httpx

from ..core.logging_utils import log_event
from .constants import TELEGRAM_API_BASE_URL
from .errors import TelegramAPIError, TelegramPermanentError, TelegramTransientError

logger = logging.getLogger(__name__)

PROMOTION_RIGHTS = (
    "is_anonymous",
    "can_manage_chat",
    "can_change_info",
    "can_post_messages",
    "can_edit_messages",
    "can_delete_messages",
    "can_manage_video_chats",
    "can_restrict_members",
    "can_promote_members",
    "can_invite_users",
    "can_pin_messages",
)


class TelegramBotClient:
    """Minimal async Telegram Bot API client.

    Rate limits (429) honour ``retry_after``; 5xx responses and network
    failures are retried with exponential backoff. Everything else surfaces
    as `TelegramAPIError`.
    """

    def __init__(
        self,
        bot_token: str,
        *,
        timeout_seconds: float = 10.0,
        base_url: str = TELEGRAM_API_BASE_URL,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/bot{bot_token}",
            timeout=timeout_seconds,
        )
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "TelegramBotClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        delay = self._retry_base_delay * (2**attempt) + random.uniform(0, 1)
        return float(min(delay, self._retry_max_delay))

    def _is_retryable_error(self, exc: Exception) -> bool:
        return isinstance(
            exc,
            (
                httpx.ConnectError,
                httpx.ReadError,
                httpx.WriteError,
                httpx.ConnectTimeout,
                httpx.ReadTimeout,
                httpx.WriteTimeout,
                httpx.RemoteProtocolError,
            ),
        )

    async def _request(
        self,
        method: str,
        payload: Optional[dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        rate_limit_retries = 0
        retry_attempt = 0
        path = f"/{method}"
        request_timeout = timeout if timeout is not None else self._timeout_seconds

        while True:
            try:
                response = await self._client.post(
                    path, json=payload or {}, timeout=request_timeout
                )
            except httpx.HTTPError as exc:
                if self._is_retryable_error(exc) and retry_attempt < self._max_retries:
                    retry_attempt += 1
                    delay = self._calculate_retry_delay(retry_attempt)
                    log_event(
                        logger,
                        logging.WARNING,
                        "telegram.request.network_retry",
                        method=method,
                        delay=round(delay, 2),
                        attempt=retry_attempt,
                        max_retries=self._max_retries,
                        exc=exc,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise TelegramTransientError(
                    f"Telegram API network error for {method}: {exc}"
                ) from exc

            body = self._decode_body(response)
            status_code = response.status_code
            description = str(body.get("description") or "").strip()
            error_code = body.get("error_code")
            if not isinstance(error_code, int):
                error_code = status_code

            if status_code == 429:
                retry_after = self._retry_after(body)
                if retry_after is not None and rate_limit_retries < self._max_retries:
                    rate_limit_retries += 1
                    log_event(
                        logger,
                        logging.INFO,
                        "telegram.request.rate_limited",
                        method=method,
                        retry_after=retry_after,
                        attempt=rate_limit_retries,
                    )
                    await asyncio.sleep(retry_after)
                    continue
                raise TelegramTransientError(
                    f"Telegram API rate limit exceeded for {method}",
                    error_code=error_code,
                    retry_after=retry_after,
                )

            if 500 <= status_code < 600:
                if retry_attempt < self._max_retries:
                    retry_attempt += 1
                    delay = self._calculate_retry_delay(retry_attempt)
                    log_event(
                        logger,
                        logging.WARNING,
                        "telegram.request.server_retry",
                        method=method,
                        status=status_code,
                        delay=round(delay, 2),
                        attempt=retry_attempt,
                        max_retries=self._max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise TelegramTransientError(
                    f"Telegram API server error for {method}: "
                    f"status={status_code} description={description!r}",
                    error_code=error_code,
                )

            if status_code >= 400 or body.get("ok") is not True:
                raise TelegramPermanentError(
                    f"Telegram API request failed for {method}: "
                    f"status={status_code} description={description!r}",
                    error_code=error_code,
                )
            return body.get("result")

    def _decode_body(self, response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            if 200 <= response.status_code < 300:
                raise TelegramAPIError(
                    "Telegram API returned a non-JSON success response"
                ) from exc
            return {}
        return body if isinstance(body, dict) else {}

    def _retry_after(self, body: dict[str, Any]) -> Optional[float]:
        parameters = body.get("parameters")
        if not isinstance(parameters, dict):
            return None
        raw = parameters.get("retry_after")
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            return None
        return max(float(raw), 0.0)

    async def get_me(self) -> dict[str, Any]:
        result = await self._request("getMe")
        return result if isinstance(result, dict) else {}

    async def get_chat_member(self, chat_id: int, user_id: int) -> dict[str, Any]:
        result = await self._request(
            "getChatMember", {"chat_id": chat_id, "user_id": user_id}
        )
        if not isinstance(result, dict):
            raise TelegramAPIError("getChatMember returned no chat member")
        return result

    async def get_chat_administrators(self, chat_id: int) -> list[dict[str, Any]]:
        result = await self._request("getChatAdministrators", {"chat_id": chat_id})
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, dict)]

    async def promote_chat_member(
        self, chat_id: int, user_id: int, **rights: bool
    ) -> bool:
        """Grant ``rights``; rights left out are revoked, so no rights demotes."""
        unknown = set(rights) - set(PROMOTION_RIGHTS)
        if unknown:
            raise ValueError(f"unknown promotion rights: {sorted(unknown)}")
        payload: dict[str, Any] = {"chat_id": chat_id, "user_id": user_id}
        for name in PROMOTION_RIGHTS:
            payload[name] = bool(rights.get(name, False))
        return bool(await self._request("promoteChatMember", payload))

    async def set_chat_administrator_custom_title(
        self, chat_id: int, user_id: int, custom_title: str
    ) -> bool:
        return bool(
            await self._request(
                "setChatAdministratorCustomTitle",
                {"chat_id": chat_id, "user_id": user_id, "custom_title": custom_title},
            )
        )

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to_message_id: Optional[int] = None,
        parse_mode: Optional[str] = None,
        disable_web_page_preview: bool = True,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": disable_web_page_preview,
        }
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
            payload["allow_sending_without_reply"] = True
        if parse_mode is not None:
            payload["parse_mode"] = parse_mode
        result = await self._request("sendMessage", payload)
        return result if isinstance(result, dict) else {}

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        return bool(
            await self._request(
                "deleteMessage", {"chat_id": chat_id, "message_id": message_id}
            )
        )

    async def get_updates(
        self,
        *,
        offset: Optional[int] = None,
        timeout: int = 30,
        allowed_updates: Sequence[str] = ("message",),
    ) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {
            "timeout": timeout,
            "allowed_updates": list(allowed_updates),
        }
        if offset is not None:
            payload["offset"] = offset
        result = await self._request(
            "getUpdates", payload, timeout=timeout + self._timeout_seconds
        )
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, dict)]

    async def set_my_commands(self, commands: Iterable[tuple[str, str]]) -> bool:
        return bool(
            await self._request(
                "setMyCommands",
                {
                    "commands": [
                        {"command": name, "description": description}
                        for name, description in commands
                    ]
                },
            )
        )

    async def set_webhook(self, url: str) -> bool:
        return bool(
            await self._request(
                "setWebhook", {"url": url, "allowed_updates": ["message"]}
            )
        )

    async def delete_webhook(self) -> bool:
        return bool(await self._request("deleteWebhook", {}))
