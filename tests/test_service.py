from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import pytest
from conftest import GROUP_CHAT_ID, FakeTelegramClient, member_payload, user_payload

from golden_axe.core.config import BotConfig
from golden_axe.telegram.commands import bot_commands
from golden_axe.telegram.constants import DONE_TEXT, GENERIC_FAILURE_TEXT
from golden_axe.telegram.service import TelegramBotService

LOGGER = logging.getLogger("golden_axe.test.service")
ALICE = user_payload(42, "Alice")


class PollingClient(FakeTelegramClient):
    """Serves queued update batches, then asks the service to stop."""

    def __init__(self, batches: list[list[dict[str, Any]]]) -> None:
        super().__init__()
        self.batches = batches
        self.offsets: list[Optional[int]] = []
        self.on_drained: Any = None
        self.webhook_deleted = 0

    async def delete_webhook(self) -> bool:
        self.webhook_deleted += 1
        return True

    async def get_updates(
        self, *, offset: Optional[int] = None, timeout: int = 30
    ) -> list[dict[str, Any]]:
        self.offsets.append(offset)
        if self.batches:
            return self.batches.pop(0)
        if self.on_drained is not None:
            self.on_drained()
        await asyncio.Event().wait()
        return []


def _update(
    update_id: int,
    text: str,
    *,
    sender: dict[str, Any] = ALICE,
    chat_type: str = "supergroup",
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "message_id": update_id * 10,
        "chat": {"id": GROUP_CHAT_ID, "type": chat_type},
        "from": sender,
        "text": text,
    }
    if text.startswith("/"):
        command = text.split(None, 1)[0]
        message["entities"] = [
            {"type": "bot_command", "offset": 0, "length": len(command)}
        ]
    return {"update_id": update_id, "message": message}


def _service(
    tmp_path: Path, client: FakeTelegramClient, title_store: Any
) -> TelegramBotService:
    config = BotConfig.from_raw(
        root=tmp_path, raw={"token": "123:abc", "poll_timeout_seconds": 0}
    )
    return TelegramBotService(
        config,
        logger=LOGGER,
        client=client,  # type: ignore[arg-type]
        store=title_store,
        run_hash="RUNHASH",
    )


def _prepare_group(client: FakeTelegramClient) -> None:
    client.set_bot_member(GROUP_CHAT_ID, can_promote_members=True, can_invite_users=True)
    client.set_member(GROUP_CHAT_ID, member_payload("member", ALICE))


@pytest.mark.anyio
async def test_submit_dispatches_command(
    tmp_path: Path,
    fake_client: FakeTelegramClient,
    title_store: Any,
    sleeps: list[float],
) -> None:
    _prepare_group(fake_client)
    service = _service(tmp_path, fake_client, title_store)

    service.submit(_update(1, "/title Chief"))
    await service.wait_idle()

    assert fake_client.replies() == [DONE_TEXT]
    assert fake_client.sent[0]["reply_to_message_id"] == 10
    records = await title_store.list_by_chat(GROUP_CHAT_ID)
    assert [(record.title, record.user_id) for record in records] == [("Chief", 42)]


@pytest.mark.anyio
async def test_submit_ignores_non_commands_and_other_updates(
    tmp_path: Path, fake_client: FakeTelegramClient, title_store: Any
) -> None:
    service = _service(tmp_path, fake_client, title_store)

    service.submit(_update(1, "hello there"))
    service.submit(_update(2, "/unknown"))
    service.submit({"update_id": 3, "edited_message": {"message_id": 1}})
    service.submit({"no": "update"})
    await service.wait_idle()

    assert fake_client.sent == []
    assert fake_client.calls == []


@pytest.mark.anyio
async def test_commands_for_other_bots_are_ignored(
    tmp_path: Path, fake_client: FakeTelegramClient, title_store: Any
) -> None:
    service = _service(tmp_path, fake_client, title_store)
    service._bot_username = "golden_axe_bot"

    service.submit(_update(1, "/titles@other_bot"))
    service.submit(_update(2, "/titles@golden_axe_bot"))
    await service.wait_idle()

    assert fake_client.replies() == ["No titles found."]


@pytest.mark.anyio
async def test_rejections_are_replied_as_plain_text(
    tmp_path: Path, fake_client: FakeTelegramClient, title_store: Any
) -> None:
    service = _service(tmp_path, fake_client, title_store)

    service.submit(_update(1, "/title"))
    service.submit(_update(2, "/titles", chat_type="private"))
    await service.wait_idle()

    assert sorted(fake_client.replies()) == [
        "This command can only be used in group",
        "Title cannot be empty",
    ]
    assert all(message["parse_mode"] is None for message in fake_client.sent)


@pytest.mark.anyio
async def test_help_works_in_private_chats(
    tmp_path: Path, fake_client: FakeTelegramClient, title_store: Any
) -> None:
    service = _service(tmp_path, fake_client, title_store)

    service.submit(_update(1, "/help", chat_type="private"))
    await service.wait_idle()

    assert fake_client.replies()[0].startswith("These commands are supported:")


@pytest.mark.anyio
async def test_unexpected_failure_gets_generic_reply(
    tmp_path: Path,
    fake_client: FakeTelegramClient,
    title_store: Any,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service = _service(tmp_path, fake_client, title_store)

    async def broken_list(chat_id: int) -> list[Any]:
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(title_store, "list_by_chat", broken_list)

    service.submit(_update(1, "/titles"))
    await service.wait_idle()

    assert fake_client.replies() == [GENERIC_FAILURE_TEXT]


@pytest.mark.anyio
async def test_run_forever_polls_until_stopped(
    tmp_path: Path, title_store: Any, sleeps: list[float]
) -> None:
    client = PollingClient(
        [
            [_update(10, "/title Chief"), _update(11, "just chatting")],
            [_update(12, "/titles")],
        ]
    )
    _prepare_group(client)
    service = _service(tmp_path, client, title_store)
    client.on_drained = service.request_stop

    await asyncio.wait_for(service.run_forever(), timeout=10)

    assert client.webhook_deleted == 1
    assert client.offsets == [None, 12, 13]
    assert ("set_my_commands", {"commands": bot_commands()}) in client.calls
    assert DONE_TEXT in client.replies()
    records = await title_store.list_by_chat(GROUP_CHAT_ID)
    assert [record.title for record in records] == ["Chief"]


@pytest.mark.anyio
async def test_run_forever_requires_bot_username(
    tmp_path: Path, fake_client: FakeTelegramClient, title_store: Any
) -> None:
    fake_client.me = user_payload(9000, "Nameless", is_bot=True)
    service = _service(tmp_path, fake_client, title_store)

    with pytest.raises(ValueError, match="no username"):
        await service.run_forever()
