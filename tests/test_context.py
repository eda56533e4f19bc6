from __future__ import annotations

from typing import Any, Callable

import pytest
from conftest import (
    ANONYMOUS_ALIAS,
    GROUP_CHAT_ID,
    FakeTelegramClient,
    member_payload,
    user_payload,
)

from golden_axe.core.context import NukeReport, UnresolvedContext
from golden_axe.core.exceptions import (
    NoSenderError,
    NotInGroupError,
    PermissionDeniedError,
    PlatformActionError,
    PlatformUnavailableError,
    UnidentifiedAnonymousSenderError,
)
from golden_axe.core.roles import Administrator, Member, Owner

ALICE = user_payload(42, "Alice")


def _promoting_bot(client: FakeTelegramClient) -> None:
    client.set_bot_member(
        GROUP_CHAT_ID, can_promote_members=True, can_invite_users=True
    )


def test_create_requires_sender(services: Any, make_message: Callable[..., Any]) -> None:
    with pytest.raises(NoSenderError):
        UnresolvedContext.create(services, make_message("/title x", sender=None))


def test_assert_in_group(services: Any, make_message: Callable[..., Any]) -> None:
    group = UnresolvedContext.create(services, make_message("/titles", sender=ALICE))
    group.assert_in_group()

    private = UnresolvedContext.create(
        services, make_message("/titles", sender=ALICE, chat_id=42, chat_type="private")
    )
    with pytest.raises(NotInGroupError) as excinfo:
        private.assert_in_group()
    assert excinfo.value.user_message == "This command can only be used in group"


@pytest.mark.anyio
async def test_resolve_fetches_bot_and_sender(
    services: Any, fake_client: FakeTelegramClient, make_message: Callable[..., Any]
) -> None:
    _promoting_bot(fake_client)
    fake_client.set_member(GROUP_CHAT_ID, member_payload("member", ALICE))
    ctx = UnresolvedContext.create(services, make_message("/title x", sender=ALICE))

    resolved = await ctx.resolve()

    assert isinstance(resolved.snapshot.bot, Administrator)
    assert isinstance(resolved.snapshot.sender, Member)
    fetched = sorted(
        kwargs["user_id"]
        for method, kwargs in fake_client.calls
        if method == "get_chat_member"
    )
    assert fetched == [42, 9000]


@pytest.mark.anyio
async def test_bot_identity_is_cached(
    services: Any, fake_client: FakeTelegramClient, make_message: Callable[..., Any]
) -> None:
    _promoting_bot(fake_client)
    for _ in range(3):
        ctx = UnresolvedContext.create(services, make_message("/title x", sender=ALICE))
        await ctx.resolve()

    assert [call for call in fake_client.calls if call[0] == "get_me"] == [
        ("get_me", {})
    ]


@pytest.mark.anyio
async def test_resolve_failure_is_platform_unavailable(
    services: Any, fake_client: FakeTelegramClient, make_message: Callable[..., Any]
) -> None:
    fake_client.fail_get_member = True
    ctx = UnresolvedContext.create(services, make_message("/title x", sender=ALICE))

    with pytest.raises(PlatformUnavailableError) as excinfo:
        await ctx.resolve()

    assert excinfo.value.escalate
    assert "chat not found" not in excinfo.value.user_message


@pytest.mark.anyio
async def test_prepare_for_edit_promotes_member_once_and_waits(
    services: Any,
    fake_client: FakeTelegramClient,
    make_message: Callable[..., Any],
    sleeps: list[float],
) -> None:
    _promoting_bot(fake_client)
    fake_client.set_member(GROUP_CHAT_ID, member_payload("member", ALICE))
    resolved = await UnresolvedContext.create(
        services, make_message("/title x", sender=ALICE)
    ).resolve()

    await resolved.prepare_for_edit()

    assert fake_client.mutations == [
        (
            "promote_chat_member",
            {"chat_id": GROUP_CHAT_ID, "user_id": 42, "can_invite_users": True},
        )
    ]
    assert sleeps == [0.5]


@pytest.mark.anyio
async def test_prepare_for_edit_editable_admin_needs_no_promotion(
    services: Any,
    fake_client: FakeTelegramClient,
    make_message: Callable[..., Any],
    sleeps: list[float],
) -> None:
    _promoting_bot(fake_client)
    fake_client.set_member(
        GROUP_CHAT_ID, member_payload("administrator", ALICE, can_be_edited=True)
    )
    resolved = await UnresolvedContext.create(
        services, make_message("/title x", sender=ALICE)
    ).resolve()

    await resolved.prepare_for_edit()

    assert fake_client.mutations == []
    assert sleeps == []


@pytest.mark.anyio
async def test_prepare_for_edit_foreign_admin_never_promotes(
    services: Any,
    fake_client: FakeTelegramClient,
    make_message: Callable[..., Any],
    sleeps: list[float],
) -> None:
    _promoting_bot(fake_client)
    fake_client.set_member(
        GROUP_CHAT_ID, member_payload("administrator", ALICE, can_be_edited=False)
    )
    resolved = await UnresolvedContext.create(
        services, make_message("/title x", sender=ALICE)
    ).resolve()

    with pytest.raises(PermissionDeniedError, match="promoted by others"):
        await resolved.prepare_for_edit()

    assert fake_client.mutations == []
    assert sleeps == []


@pytest.mark.anyio
async def test_failed_promotion_becomes_platform_action_error(
    services: Any,
    fake_client: FakeTelegramClient,
    make_message: Callable[..., Any],
    sleeps: list[float],
) -> None:
    _promoting_bot(fake_client)
    fake_client.set_member(GROUP_CHAT_ID, member_payload("member", ALICE))
    fake_client.fail_promote_for.add(42)
    resolved = await UnresolvedContext.create(
        services, make_message("/title x", sender=ALICE)
    ).resolve()

    with pytest.raises(PlatformActionError) as excinfo:
        await resolved.prepare_for_edit()

    assert excinfo.value.user_message == "Failed to promote"
    assert sleeps == []


@pytest.mark.anyio
async def test_resolve_anonymous_identity_swaps_sender(
    services: Any, fake_client: FakeTelegramClient, make_message: Callable[..., Any]
) -> None:
    _promoting_bot(fake_client)
    await services.store.insert_title(GROUP_CHAT_ID, 42, "Chief")
    resolved = await UnresolvedContext.create(
        services,
        make_message("/deanonymous", sender=ANONYMOUS_ALIAS, author_signature="Chief"),
    ).resolve()

    identified = await resolved.resolve_anonymous_identity()

    assert identified.is_anonymous
    assert identified.sender.id == 42
    assert not resolved.is_anonymous


@pytest.mark.anyio
async def test_resolve_anonymous_identity_passes_through_regular_sender(
    services: Any, fake_client: FakeTelegramClient, make_message: Callable[..., Any]
) -> None:
    _promoting_bot(fake_client)
    resolved = await UnresolvedContext.create(
        services, make_message("/deanonymous", sender=ALICE)
    ).resolve()

    assert await resolved.resolve_anonymous_identity() is resolved


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("signature", "message"),
    [(None, "don't have a title"), ("Stranger", "don't recognize you")],
)
async def test_resolve_anonymous_identity_unknown_alias(
    services: Any,
    fake_client: FakeTelegramClient,
    make_message: Callable[..., Any],
    signature: str | None,
    message: str,
) -> None:
    _promoting_bot(fake_client)
    resolved = await UnresolvedContext.create(
        services,
        make_message("/deanonymous", sender=ANONYMOUS_ALIAS, author_signature=signature),
    ).resolve()

    with pytest.raises(UnidentifiedAnonymousSenderError, match=message):
        await resolved.resolve_anonymous_identity()


@pytest.mark.anyio
async def test_with_substituted_sender_keeps_bot_role(
    services: Any, fake_client: FakeTelegramClient, make_message: Callable[..., Any]
) -> None:
    _promoting_bot(fake_client)
    owner = user_payload(1, "Olga")
    fake_client.set_member(GROUP_CHAT_ID, member_payload("creator", owner))
    fake_client.set_member(
        GROUP_CHAT_ID, member_payload("administrator", ALICE, can_be_edited=True)
    )
    resolved = await UnresolvedContext.create(
        services, make_message("/demote 42", sender=owner)
    ).resolve()

    target = resolved.with_substituted_sender(await resolved.fetch_member(42))

    assert isinstance(resolved.snapshot.sender, Owner)
    assert target.snapshot.bot == resolved.snapshot.bot
    assert isinstance(target.snapshot.sender, Administrator)
    assert target.sender.id == 42
    assert target.chat_id == resolved.chat_id


@pytest.mark.anyio
async def test_nuke_demotes_editable_admins_and_reports(
    services: Any, fake_client: FakeTelegramClient, make_message: Callable[..., Any]
) -> None:
    _promoting_bot(fake_client)
    owner = user_payload(1, "Olga")
    fake_client.set_member(GROUP_CHAT_ID, member_payload("creator", owner))
    for user_id in (11, 12, 13):
        fake_client.set_member(
            GROUP_CHAT_ID,
            member_payload("administrator", user_payload(user_id), can_be_edited=True),
        )
        await services.store.insert_title(GROUP_CHAT_ID, user_id, f"t{user_id}")
    fake_client.set_member(
        GROUP_CHAT_ID,
        member_payload("administrator", user_payload(14), can_be_edited=False),
    )
    await services.store.insert_title(GROUP_CHAT_ID, 14, "t14")
    fake_client.fail_promote_for.add(13)
    resolved = await UnresolvedContext.create(
        services, make_message("/nuke", sender=owner)
    ).resolve()

    report = await resolved.nuke()

    assert report == NukeReport(attempted=3, succeeded=2)
    demoted = sorted(
        kwargs["user_id"]
        for method, kwargs in fake_client.mutations
        if method == "promote_chat_member"
    )
    assert demoted == [11, 12, 13]
    remaining = await services.store.list_by_chat(GROUP_CHAT_ID)
    # Store removals run before each demotion and are not rolled back.
    assert [record.user_id for record in remaining] == [14]
