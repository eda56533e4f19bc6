from __future__ import annotations

from typing import Optional

from ..core.exceptions import PermanentError, TransientError


class TelegramAPIError(Exception):
    """Telegram Bot API request error."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.retry_after = retry_after


class TelegramTransientError(TelegramAPIError, TransientError):
    """Retryable Telegram API error (rate limits, network issues, 5xx)."""


class TelegramPermanentError(TelegramAPIError, PermanentError):
    """Non-retryable Telegram API error (bad request, missing rights, auth)."""
