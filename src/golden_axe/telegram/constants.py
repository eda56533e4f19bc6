from __future__ import annotations

TELEGRAM_API_BASE_URL = "https://api.telegram.org"

DONE_TEXT = "Done! Wait for a while to take effect."
GENERIC_FAILURE_TEXT = "Something went wrong, the maintainers have been notified."
