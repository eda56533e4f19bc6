"""Test harness configuration.

This repo uses a `src/` layout. In some developer environments an older
installed `golden_axe` package can shadow the local sources.

Ensure tests always import the in-repo code.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import pytest

DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS = 60

BOT_ID = 9000
OWNER_ID = 1
GROUP_CHAT_ID = -1001234


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    src_path = str(src_dir)
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    """
    Apply a default per-test timeout to non-integration tests.

    This relies on `pytest-timeout` when installed; if it isn't installed, the
    marker is inert but still documents the intent.
    """
    _ = session, config
    for item in items:
        if item.get_closest_marker("integration") is not None:
            continue
        item.add_marker(pytest.mark.timeout(DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS))


def user_payload(
    user_id: int,
    first_name: str = "User",
    *,
    is_bot: bool = False,
    username: Optional[str] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": user_id,
        "is_bot": is_bot,
        "first_name": first_name,
    }
    if username is not None:
        payload["username"] = username
    return payload


def member_payload(status: str, user: dict[str, Any], **flags: bool) -> dict[str, Any]:
    return {"status": status, "user": user, **flags}


ANONYMOUS_ALIAS = user_payload(
    1087968824, "Group", is_bot=True, username="GroupAnonymousBot"
)


class FakeTelegramClient:
    """In-memory stand-in for `TelegramBotClient` that records every call."""

    MUTATIONS = frozenset({"promote_chat_member", "set_chat_administrator_custom_title"})

    def __init__(self) -> None:
        self.me = user_payload(BOT_ID, "Golden Axe", is_bot=True, username="golden_axe_bot")
        self.members: dict[tuple[int, int], dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.sent: list[dict[str, Any]] = []
        self.fail_promote_for: set[int] = set()
        self.fail_get_member = False

    def set_member(self, chat_id: int, payload: dict[str, Any]) -> None:
        self.members[(chat_id, payload["user"]["id"])] = payload

    def set_bot_member(self, chat_id: int, status: str = "administrator", **flags: bool) -> None:
        self.set_member(chat_id, member_payload(status, self.me, **flags))

    @property
    def mutations(self) -> list[tuple[str, dict[str, Any]]]:
        return [call for call in self.calls if call[0] in self.MUTATIONS]

    def replies(self) -> list[str]:
        return [message["text"] for message in self.sent]

    def _record(self, method: str, **kwargs: Any) -> None:
        self.calls.append((method, kwargs))

    def _api_error(self, description: str) -> Exception:
        from golden_axe.telegram.errors import TelegramPermanentError

        return TelegramPermanentError(description, error_code=400)

    async def get_me(self) -> dict[str, Any]:
        self._record("get_me")
        return dict(self.me)

    async def get_chat_member(self, chat_id: int, user_id: int) -> dict[str, Any]:
        self._record("get_chat_member", chat_id=chat_id, user_id=user_id)
        if self.fail_get_member:
            raise self._api_error("Bad Request: chat not found")
        payload = self.members.get((chat_id, user_id))
        if payload is None:
            return member_payload("left", user_payload(user_id))
        return payload

    async def get_chat_administrators(self, chat_id: int) -> list[dict[str, Any]]:
        self._record("get_chat_administrators", chat_id=chat_id)
        return [
            payload
            for (member_chat, _user), payload in self.members.items()
            if member_chat == chat_id
            and payload["status"] in {"creator", "administrator"}
        ]

    async def promote_chat_member(
        self, chat_id: int, user_id: int, **rights: bool
    ) -> bool:
        self._record("promote_chat_member", chat_id=chat_id, user_id=user_id, **rights)
        if user_id in self.fail_promote_for:
            raise self._api_error("Bad Request: not enough rights")
        return True

    async def set_chat_administrator_custom_title(
        self, chat_id: int, user_id: int, custom_title: str
    ) -> bool:
        self._record(
            "set_chat_administrator_custom_title",
            chat_id=chat_id,
            user_id=user_id,
            custom_title=custom_title,
        )
        return True

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to_message_id: Optional[int] = None,
        parse_mode: Optional[str] = None,
    ) -> dict[str, Any]:
        message = {
            "chat_id": chat_id,
            "text": text,
            "reply_to_message_id": reply_to_message_id,
            "parse_mode": parse_mode,
        }
        self.sent.append(message)
        return {"message_id": len(self.sent), "chat": {"id": chat_id, "type": "supergroup"}}

    async def set_my_commands(self, commands: Any) -> bool:
        self._record("set_my_commands", commands=list(commands))
        return True


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def fake_client() -> FakeTelegramClient:
    return FakeTelegramClient()


@pytest.fixture()
def title_store(tmp_path: Path) -> Iterator[Any]:
    from golden_axe.core.titles import TitleStore

    store = TitleStore(tmp_path / "titles.sqlite3")
    yield store
    store._executor.submit(store._close_sync).result()
    store._executor.shutdown(wait=True)


@pytest.fixture()
def services(fake_client: FakeTelegramClient, title_store: Any) -> Any:
    from golden_axe.core.debug_channel import DebugChannel
    from golden_axe.core.services import BotServices

    return BotServices(
        client=fake_client,
        store=title_store,
        debug=DebugChannel(fake_client, None),
        run_hash="TESTHASH",
    )


@pytest.fixture()
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        recorded.append(seconds)

    monkeypatch.setattr("golden_axe.core.context.asyncio.sleep", fake_sleep)
    return recorded


@pytest.fixture()
def make_message() -> Callable[..., Any]:
    """Build a `TelegramMessage` from the same shape Telegram sends."""
    from golden_axe.telegram.models import TelegramMessage

    counter = {"value": 0}

    def _make(
        text: str,
        *,
        sender: Optional[dict[str, Any]],
        chat_id: int = GROUP_CHAT_ID,
        chat_type: str = "supergroup",
        author_signature: Optional[str] = None,
        reply_to: Optional[dict[str, Any]] = None,
    ) -> Any:
        counter["value"] += 1
        payload: dict[str, Any] = {
            "message_id": counter["value"],
            "chat": {"id": chat_id, "type": chat_type},
            "text": text,
        }
        if sender is not None:
            payload["from"] = sender
        if author_signature is not None:
            payload["author_signature"] = author_signature
        if reply_to is not None:
            payload["reply_to_message"] = reply_to
        if text.startswith("/"):
            command = text.split(None, 1)[0]
            payload["entities"] = [
                {"type": "bot_command", "offset": 0, "length": len(command)}
            ]
        message = TelegramMessage.from_payload(payload)
        assert message is not None
        return message

    return _make
