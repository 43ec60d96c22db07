import asyncio
import json

import httpx
import pytest

from engagement.features.retention.domain import ConfigurationError, SendRequestValidationError
from engagement.features.retention.services.messaging import (
    MessagingDispatcher,
    TelegramTransport,
    WhatsAppTransport,
    send_engagement_message,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _whatsapp(handler, timeout: float = 5.0) -> WhatsAppTransport:
    return WhatsAppTransport(
        phone_number_id="12345",
        access_token="wa-token",
        api_version="v19.0",
        client=_client(handler),
        timeout=timeout,
    )


def _telegram(handler) -> TelegramTransport:
    return TelegramTransport(bot_token="tg-token", client=_client(handler), timeout=5.0)


@pytest.mark.asyncio
async def test_whatsapp_send_success():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

    result = await _whatsapp(handler).send("+1 (555) 123-4567", "Hello")

    assert result.success is True
    assert result.error_detail is None
    assert captured["url"] == "https://graph.facebook.com/v19.0/12345/messages"
    assert captured["auth"] == "Bearer wa-token"
    assert captured["body"]["to"] == "15551234567"
    assert captured["body"]["text"]["body"] == "Hello"


@pytest.mark.asyncio
async def test_whatsapp_invalid_recipient_fails_without_network():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    result = await _whatsapp(handler).send("not-a-number", "Hello")

    assert result.success is False
    assert "Invalid WhatsApp recipient" in result.error_detail
    assert calls == []


@pytest.mark.asyncio
async def test_whatsapp_auth_failure_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Invalid OAuth access token"}})

    result = await _whatsapp(handler).send("+15551234567", "Hello")

    assert result.success is False
    assert "Invalid OAuth access token" in result.error_detail


@pytest.mark.asyncio
async def test_provider_timeout_is_reported():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    result = await _whatsapp(handler, timeout=0.01).send("+15551234567", "Hello")

    assert result.success is False
    assert "timed out" in result.error_detail


@pytest.mark.asyncio
async def test_connection_error_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await _whatsapp(handler).send("+15551234567", "Hello")

    assert result.success is False
    assert "ConnectError" in result.error_detail


@pytest.mark.asyncio
async def test_missing_credentials_fail_the_send():
    transport = WhatsAppTransport(client=_client(lambda r: httpx.Response(200)))

    result = await transport.send("+15551234567", "Hello")

    assert result.success is False
    assert "WHATSAPP_PHONE_NUMBER_ID" in result.error_detail


@pytest.mark.asyncio
async def test_telegram_send_includes_keyboard():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

    keyboard = {"inline_keyboard": [[{"text": "5", "callback_data": "feedback:a1:5"}]]}
    result = await _telegram(handler).send("987654", "How was it?", reply_markup=keyboard)

    assert result.success is True
    assert captured["url"] == "https://api.telegram.org/bottg-token/sendMessage"
    assert captured["body"]["chat_id"] == 987654
    assert captured["body"]["reply_markup"] == keyboard


@pytest.mark.asyncio
async def test_telegram_ok_false_is_a_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "description": "Bad Request: chat not found"})

    result = await _telegram(handler).send("987654", "Hello")

    assert result.success is False
    assert "chat not found" in result.error_detail


@pytest.mark.asyncio
async def test_telegram_rejects_non_numeric_chat_id():
    result = await _telegram(lambda r: httpx.Response(200, json={"ok": True})).send("@user", "Hi")

    assert result.success is False
    assert "Telegram recipient" in result.error_detail


@pytest.mark.asyncio
async def test_dispatcher_unknown_channel_returns_failure():
    dispatcher = MessagingDispatcher([_telegram(lambda r: httpx.Response(200, json={"ok": True}))])

    result = await dispatcher.send("sms", "123", "Hello")

    assert result.success is False
    assert "Unsupported channel" in result.error_detail


def test_validate_configuration_lists_missing_credentials():
    dispatcher = MessagingDispatcher([WhatsAppTransport(), TelegramTransport()])

    with pytest.raises(ConfigurationError) as exc_info:
        dispatcher.validate_configuration(["whatsapp", "telegram"])

    assert set(exc_info.value.missing) == {
        "WHATSAPP_PHONE_NUMBER_ID",
        "WHATSAPP_ACCESS_TOKEN",
        "TELEGRAM_BOT_TOKEN",
    }


def test_validate_configuration_only_checks_enabled_channels():
    dispatcher = MessagingDispatcher([WhatsAppTransport(), TelegramTransport(bot_token="t")])

    dispatcher.validate_configuration(["telegram"])


@pytest.mark.asyncio
async def test_manual_send_requires_recipient_and_text(fake_dispatcher):
    with pytest.raises(SendRequestValidationError):
        await send_engagement_message("telegram", None, "Hello", fake_dispatcher)

    with pytest.raises(SendRequestValidationError):
        await send_engagement_message("telegram", "123", "", fake_dispatcher)

    assert fake_dispatcher.sent == []


@pytest.mark.asyncio
async def test_manual_send_rejects_unknown_channel(fake_dispatcher):
    with pytest.raises(SendRequestValidationError):
        await send_engagement_message("pigeon", "123", "Hello", fake_dispatcher)
