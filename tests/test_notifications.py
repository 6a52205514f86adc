"""Tests for the Expo push client and the notification emitter."""
import json

import httpx
import pytest
import respx
from sqlalchemy import select

from app.config import settings
from app.models import PushToken
from app.services.notifications import ExpoPushClient, NotificationEmitter, format_amount

EXPO_URL = settings.EXPO_PUSH_URL


def test_format_amount():
    assert format_amount(2500, "USD") == "$25.00"
    assert format_amount(500000, "JMD") == "JMD 5,000.00"
    assert format_amount(123456789, "usd") == "$1,234,567.89"


# ===== PUSH CLIENT =====

@pytest.mark.asyncio
@respx.mock
async def test_send_success():
    route = respx.post(EXPO_URL).mock(
        return_value=httpx.Response(200, json={"data": [{"status": "ok", "id": "ticket-1"}]})
    )

    tickets, error = await ExpoPushClient().send(
        ["ExponentPushToken[abc]"], "Payment Received", "You received $25.00", {"type": "payment_received"}
    )

    assert error is None
    assert tickets == [{"status": "ok", "id": "ticket-1"}]
    sent = route.calls.last.request
    body = json.loads(sent.content)
    assert body["to"] == ["ExponentPushToken[abc]"]
    assert body["title"] == "Payment Received"
    assert body["sound"] == "default"
    assert body["data"] == {"type": "payment_received"}


@pytest.mark.asyncio
@respx.mock
async def test_send_http_error():
    respx.post(EXPO_URL).mock(return_value=httpx.Response(500, text="Internal error"))

    tickets, error = await ExpoPushClient().send(["ExponentPushToken[abc]"], "t", "b")

    assert tickets is None
    assert error == "Expo API error: 500 Internal error"


@pytest.mark.asyncio
@respx.mock
async def test_send_timeout():
    respx.post(EXPO_URL).mock(side_effect=httpx.ConnectTimeout("timed out"))

    tickets, error = await ExpoPushClient().send(["ExponentPushToken[abc]"], "t", "b")

    assert tickets is None
    assert error == "Push request timed out"


@pytest.mark.asyncio
@respx.mock
async def test_send_connection_error():
    respx.post(EXPO_URL).mock(side_effect=httpx.ConnectError("refused"))

    tickets, error = await ExpoPushClient().send(["ExponentPushToken[abc]"], "t", "b")

    assert tickets is None
    assert error.startswith("Failed to connect to Expo push service")


# ===== EMITTER =====

@pytest.mark.asyncio
@respx.mock
async def test_emitter_sends_and_touches_tokens(TestSessionLocal, create_user, create_push_token):
    await create_user("user_1")
    await create_push_token("user_1", "ExponentPushToken[one]")
    await create_push_token("user_1", "ExponentPushToken[two]")
    route = respx.post(EXPO_URL).mock(return_value=httpx.Response(200, json={"data": []}))
    emitter = NotificationEmitter(ExpoPushClient(), TestSessionLocal)

    emitter.notify_payment_received("user_1", 2500, "USD", sender_name="Jane", merchant_name="Bob")
    await emitter.drain()

    assert route.call_count == 1
    assert len(emitter.failures) == 0
    async with TestSessionLocal() as session:
        tokens = (await session.execute(select(PushToken))).scalars().all()
    assert len(tokens) == 2
    assert all(token.last_used is not None for token in tokens)


@pytest.mark.asyncio
async def test_payment_received_omits_own_name(notifier, push_client, create_user, create_push_token):
    await create_user("user_1")
    await create_push_token("user_1")

    notifier.notify_payment_received(
        "user_1", 2500, "USD", sender_name="test merchant", merchant_name="Test Merchant"
    )
    notifier.notify_payment_received(
        "user_1", 500000, "JMD", sender_name="Jane Customer", merchant_name="Test Merchant"
    )
    await notifier.drain()

    bodies = sorted(message["body"] for message in push_client.sent)
    assert bodies == ["You received $25.00", "You received JMD 5,000.00 from Jane Customer"]


@pytest.mark.asyncio
async def test_user_without_tokens_is_skipped(notifier, push_client, create_user):
    await create_user("user_1")

    notifier.notify_welcome("user_1", "Jane")
    await notifier.drain()

    assert push_client.sent == []
    assert len(notifier.failures) == 0


@pytest.mark.asyncio
async def test_inactive_tokens_are_not_used(notifier, push_client, create_user, TestSessionLocal):
    await create_user("user_1")
    async with TestSessionLocal() as session:
        session.add(PushToken(user_id="user_1", token="ExponentPushToken[old]", platform="android", is_active=False))
        await session.commit()

    notifier.notify_transaction_failed("user_1", "Card declined")
    await notifier.drain()

    assert push_client.sent == []


@pytest.mark.asyncio
async def test_send_error_is_recorded_not_raised(notifier, push_client, create_user, create_push_token):
    await create_user("user_1")
    await create_push_token("user_1")
    push_client.error = "Expo API error: 503 Unavailable"

    notifier.notify_payout_processed("user_1", 150000, "JMD")
    await notifier.drain()

    assert len(push_client.sent) == 1
    assert push_client.sent[0]["title"] == "Payout Processed"
    assert len(notifier.failures) == 1
    failure = notifier.failures[0]
    assert failure.user_id == "user_1"
    assert failure.title == "Payout Processed"
    assert failure.error == "Expo API error: 503 Unavailable"


@pytest.mark.asyncio
async def test_unexpected_exception_is_recorded(notifier, push_client, create_user, create_push_token):
    await create_user("user_1")
    await create_push_token("user_1")

    async def broken_send(*args, **kwargs):
        raise RuntimeError("boom")

    push_client.send = broken_send

    notifier.notify_welcome("user_1")
    await notifier.drain()

    assert [failure.error for failure in notifier.failures] == ["boom"]
