from datetime import UTC, datetime

import pytest

from campus_push.features.push_notifications.domain import NotificationMessage
from campus_push.features.push_notifications.pipeline.dispatcher import BatchDispatcher
from campus_push.features.push_notifications.services.manual_send import (
    ManualSendError,
    ManualSender,
)

pytestmark = pytest.mark.integration

MESSAGE = NotificationMessage(title="Announcement", body="Campus closed today", data={"id": 7})


def _sender(directory, gateway) -> ManualSender:
    return ManualSender(directory, BatchDispatcher(gateway))


@pytest.mark.asyncio
async def test_send_to_user_reaches_every_device_without_watermarks(
    directory_factory, fake_gateway, make_device, make_record
):
    directory = directory_factory([make_record("u1", make_device("a"), make_device("b", timezone=None))])

    result = await _sender(directory, fake_gateway).send_to_user("u1", MESSAGE)

    assert sorted(fake_gateway.sent_tokens) == ["a", "b"]
    assert fake_gateway.calls[0]["data"] == {"id": "7"}
    assert result["sent"] == 2
    assert directory.device("u1", "a").last_sent == {}
    assert not any(c[0].startswith("bulk_set") for c in directory.write_calls)


@pytest.mark.asyncio
async def test_send_to_user_prunes_dead_tokens(
    directory_factory, gateway_factory, make_device, make_record
):
    gateway = gateway_factory(errors={"dead": "invalid-registration-token"})
    directory = directory_factory(
        [
            make_record("u1", make_device("dead"), make_device("ok")),
            make_record("u2", make_device("dead")),
        ]
    )

    result = await _sender(directory, gateway).send_to_user("u1", MESSAGE)

    assert result["pruned"] == 1
    assert directory.tokens_of("u1") == ["ok"]
    assert directory.tokens_of("u2") == []


@pytest.mark.asyncio
async def test_send_to_unknown_user_fails(directory_factory, fake_gateway):
    with pytest.raises(ManualSendError):
        await _sender(directory_factory(), fake_gateway).send_to_user("ghost", MESSAGE)
    assert fake_gateway.calls == []


@pytest.mark.asyncio
async def test_send_to_device(directory_factory, fake_gateway, make_device, make_record):
    ios = make_device("b", user_agent="CampusApp/3.2 (iPhone; iOS 17.4)")
    directory = directory_factory([make_record("u1", make_device("a"), ios)])
    sender = _sender(directory, fake_gateway)

    result = await sender.send_to_device("u1", "b", MESSAGE)

    assert fake_gateway.sent_tokens == ["b"]
    assert result["unique_tokens"] == 1
    assert result["user_agent"] == "CampusApp/3.2 (iPhone; iOS 17.4)"

    with pytest.raises(ManualSendError):
        await sender.send_to_device("u1", "not-mine", MESSAGE)


@pytest.mark.asyncio
async def test_broadcast_dedupes_shared_tokens(
    directory_factory, fake_gateway, make_device, make_record
):
    directory = directory_factory(
        [
            make_record("u1", make_device("shared", last_opened_app_at=datetime(2024, 6, 1, tzinfo=UTC))),
            make_record("u2", make_device("shared"), make_device("solo")),
        ]
    )

    result = await _sender(directory, fake_gateway).broadcast(MESSAGE)

    assert sorted(fake_gateway.sent_tokens) == ["shared", "solo"]
    assert result["unique_tokens"] == 2


@pytest.mark.asyncio
async def test_broadcast_with_empty_directory_fails(directory_factory, fake_gateway):
    with pytest.raises(ManualSendError):
        await _sender(directory_factory(), fake_gateway).broadcast(MESSAGE)
