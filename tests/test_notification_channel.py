import json
import uuid
from types import SimpleNamespace

import httpx
import pytest
import respx

from tourwatch.services.notification_channel import (
    LogChannel,
    TelegramChannel,
    build_message,
    build_payload,
    parse_control_callback,
)
from tourwatch.services.offers import NewOfferChange, PriceDropChange, RankedCandidate

from conftest import make_candidate

API = "https://telegram.test"
SEARCH_ID = uuid.UUID("8d3c2f0e-5b1a-4c7e-9f00-1a2b3c4d5e6f")


def price_drop():
    ranked = RankedCandidate(candidate=make_candidate("101", 135000), score=93)
    return PriceDropChange(ranked=ranked, previous_price=150000)


def event_for(change):
    return SimpleNamespace(
        id=uuid.uuid4(),
        owner_id="123456",
        reason=change.reason,
        payload=build_payload(change, SEARCH_ID),
    )


def test_price_drop_message():
    title, text = build_message(price_drop())

    assert title == "💰 Price dropped by 15 000 ₽!"
    assert "🏨 Hotel 101 5⭐" in text
    assert "💵 135 000 ₽" in text
    assert "🍴 all_inclusive" in text
    assert text.endswith("🎯 Match: 93%")


def test_new_offer_message():
    change = NewOfferChange(ranked=RankedCandidate(candidate=make_candidate("7", 99000), score=88))
    title, _ = build_message(change)
    assert title == "🆕 New tour found!"


def test_payload_carries_controls():
    payload = build_payload(price_drop(), SEARCH_ID)

    assert payload["action_url"] == "https://tours.example/101"
    assert [c["callback_data"] for c in payload["controls"]] == [
        f"monitor:pause:{SEARCH_ID}",
        f"monitor:stop:{SEARCH_ID}",
    ]


def test_parse_control_callback():
    assert parse_control_callback(f"monitor:stop:{SEARCH_ID}") == ("stop", str(SEARCH_ID))
    assert parse_control_callback("monitor:resume:abc") is None
    assert parse_control_callback("view_bg_tour_1") is None
    assert parse_control_callback("") is None


@pytest.mark.asyncio
async def test_telegram_delivery_sends_inline_keyboard():
    async with respx.mock() as router:
        route = router.post(f"{API}/botTOKEN/sendMessage").mock(
            return_value=httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})
        )
        async with httpx.AsyncClient() as session:
            channel = TelegramChannel("TOKEN", api_base_url=API, client=session)
            result = await channel.deliver(event_for(price_drop()))

    assert result.ok
    body = json.loads(route.calls.last.request.content)
    assert body["chat_id"] == "123456"
    assert body["text"].startswith("💰 Price dropped")
    keyboard = body["reply_markup"]["inline_keyboard"]
    assert keyboard[0][0]["url"] == "https://tours.example/101"
    assert keyboard[1][1]["callback_data"] == f"monitor:stop:{SEARCH_ID}"


@pytest.mark.asyncio
async def test_telegram_rejection_is_a_failed_delivery():
    async with respx.mock() as router:
        router.post(f"{API}/botTOKEN/sendMessage").mock(
            return_value=httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked by the user"})
        )
        async with httpx.AsyncClient() as session:
            channel = TelegramChannel("TOKEN", api_base_url=API, client=session)
            result = await channel.deliver(event_for(price_drop()))

    assert result.status == "failed"
    assert "blocked" in result.error


@pytest.mark.asyncio
async def test_telegram_network_error_is_a_failed_delivery():
    async with respx.mock() as router:
        router.post(f"{API}/botTOKEN/sendMessage").mock(side_effect=httpx.ConnectTimeout("timed out"))
        async with httpx.AsyncClient() as session:
            channel = TelegramChannel("TOKEN", api_base_url=API, client=session)
            result = await channel.deliver(event_for(price_drop()))

    assert result.status == "failed"
    assert result.error == "timed out"


@pytest.mark.asyncio
async def test_log_channel_always_sends():
    result = await LogChannel().deliver(event_for(price_drop()))
    assert result.ok
