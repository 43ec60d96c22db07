"""
Messaging dispatcher for engagement messages.

Each transport owns its provider's authentication and request format and
reports every outcome as a DispatchResult. Provider failures (timeouts,
invalid recipients, auth errors, non-2xx responses) are caught at the
transport boundary; nothing is raised to the caller and nothing is
retried here - retry policy belongs to the proactive agent's next tick.
"""

import asyncio
import re
from collections.abc import Iterable
from typing import Any

import httpx

from engagement.config import settings
from engagement.features.retention.domain import (
    Channel,
    ConfigurationError,
    DispatchResult,
    ProviderError,
    SendRequestValidationError,
)
from engagement.infrastructure.observability.logging import get_logger, log_dispatch

logger = get_logger(__name__)

WHATSAPP_API_BASE_URL = "https://graph.facebook.com"
TELEGRAM_API_BASE_URL = "https://api.telegram.org"

WHATSAPP_RECIPIENT_PATTERN = re.compile(r"^\+?[1-9]\d{6,14}$")
TELEGRAM_CHAT_ID_PATTERN = re.compile(r"^-?\d+$")
AUTH_FAILURE_STATUS_CODES = {401, 403}


class MessagingTransport:
    """Base transport: validation, timeout and error capture around _deliver()."""

    channel: Channel

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), limits=limits)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def missing_credentials(self) -> list[str]:
        """Names of settings this transport needs but does not have."""
        raise NotImplementedError

    def normalize_recipient(self, recipient: str) -> str:
        """Return the provider form of a recipient or raise ProviderError."""
        raise NotImplementedError

    async def _deliver(self, recipient: str, text: str, **options: Any) -> None:
        raise NotImplementedError

    async def send(self, recipient: str, text: str, **options: Any) -> DispatchResult:
        """
        Send one message.

        Returns:
            DispatchResult with success=False and error_detail set on any failure.
        """
        try:
            normalized = self.normalize_recipient(recipient)

            missing = self.missing_credentials()
            if missing:
                raise ProviderError(
                    f"{self.channel.value} credentials not configured: {', '.join(missing)}",
                    channel=self.channel.value,
                    recoverable=False,
                )

            await asyncio.wait_for(
                self._deliver(normalized, text, **options), timeout=self.timeout
            )

        except ProviderError as e:
            return self._failure(recipient, str(e))
        except (TimeoutError, httpx.TimeoutException):
            return self._failure(recipient, f"Provider timed out after {self.timeout}s")
        except httpx.RequestError as e:
            return self._failure(recipient, f"Provider request failed: {type(e).__name__}: {e}")
        except Exception as e:
            logger.error(
                "Unexpected transport error",
                channel=self.channel.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._failure(recipient, f"Unexpected error: {type(e).__name__}: {e}")

        return DispatchResult(channel=self.channel.value, recipient=str(recipient), success=True)

    def _failure(self, recipient: str, detail: str) -> DispatchResult:
        return DispatchResult(
            channel=self.channel.value, recipient=str(recipient), success=False, error_detail=detail
        )

    def _raise_for_response(self, response: httpx.Response, description: str | None) -> None:
        if response.is_success:
            return

        message = description or f"HTTP {response.status_code}"
        raise ProviderError(
            f"{self.channel.value} rejected the message: {message}",
            channel=self.channel.value,
            status_code=response.status_code,
            recoverable=response.status_code not in AUTH_FAILURE_STATUS_CODES,
        )


class WhatsAppTransport(MessagingTransport):
    """Meta Graph API (WhatsApp Cloud) text messages."""

    channel = Channel.WHATSAPP

    def __init__(
        self,
        phone_number_id: str | None = None,
        access_token: str | None = None,
        api_version: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        super().__init__(client=client, timeout=timeout)
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_version = api_version or settings.WHATSAPP_API_VERSION

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self.phone_number_id:
            missing.append("WHATSAPP_PHONE_NUMBER_ID")
        if not self.access_token:
            missing.append("WHATSAPP_ACCESS_TOKEN")
        return missing

    def normalize_recipient(self, recipient: str) -> str:
        cleaned = re.sub(r"[\s\-()]", "", str(recipient or ""))
        if not WHATSAPP_RECIPIENT_PATTERN.match(cleaned):
            raise ProviderError(
                "Invalid WhatsApp recipient: expected an international phone number",
                channel=self.channel.value,
                operation="validate_recipient",
                recoverable=False,
            )
        return cleaned.lstrip("+")

    async def _deliver(self, recipient: str, text: str, **options: Any) -> None:
        url = f"{WHATSAPP_API_BASE_URL}/{self.api_version}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

        response = await self._get_client().post(url, json=payload, headers=headers)

        description = None
        if not response.is_success:
            try:
                error_info = response.json().get("error", {})
                description = error_info.get("message")
            except ValueError:
                description = response.text[:200] or None

        self._raise_for_response(response, description)


class TelegramTransport(MessagingTransport):
    """Telegram Bot API sendMessage, with optional inline keyboard."""

    channel = Channel.TELEGRAM

    def __init__(
        self,
        bot_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        super().__init__(client=client, timeout=timeout)
        self.bot_token = bot_token

    def missing_credentials(self) -> list[str]:
        return [] if self.bot_token else ["TELEGRAM_BOT_TOKEN"]

    def normalize_recipient(self, recipient: str) -> str:
        cleaned = str(recipient or "").strip()
        if not TELEGRAM_CHAT_ID_PATTERN.match(cleaned):
            raise ProviderError(
                "Invalid Telegram recipient: chat id must be numeric",
                channel=self.channel.value,
                operation="validate_recipient",
                recoverable=False,
            )
        return cleaned

    async def _deliver(self, recipient: str, text: str, **options: Any) -> None:
        url = f"{TELEGRAM_API_BASE_URL}/bot{self.bot_token}/sendMessage"
        payload: dict[str, Any] = {
            "chat_id": int(recipient),
            "text": text,
            "parse_mode": "Markdown",
        }
        if options.get("reply_markup"):
            payload["reply_markup"] = options["reply_markup"]

        response = await self._get_client().post(url, json=payload)

        description = None
        try:
            body = response.json()
        except ValueError:
            body = {}

        # Telegram can answer 200 with ok=false
        if response.is_success and body.get("ok") is False:
            raise ProviderError(
                f"telegram rejected the message: {body.get('description', 'unknown error')}",
                channel=self.channel.value,
                status_code=response.status_code,
            )

        if not response.is_success:
            description = body.get("description") or response.text[:200] or None

        self._raise_for_response(response, description)


class MessagingDispatcher:
    """Routes a send to the transport for the requested channel."""

    def __init__(self, transports: Iterable[MessagingTransport]):
        self._transports: dict[str, MessagingTransport] = {t.channel.value: t for t in transports}

    @classmethod
    def from_settings(cls) -> "MessagingDispatcher":
        return cls(
            [
                WhatsAppTransport(
                    phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
                    access_token=settings.WHATSAPP_ACCESS_TOKEN,
                ),
                TelegramTransport(bot_token=settings.TELEGRAM_BOT_TOKEN),
            ]
        )

    @property
    def channels(self) -> list[str]:
        return sorted(self._transports)

    def validate_configuration(self, enabled_channels: Iterable[str] | None = None) -> None:
        """
        Fail fast when an enabled channel has no credentials.

        Raises:
            ConfigurationError: listing every missing setting.
        """
        if enabled_channels is None:
            enabled_channels = settings.ENGAGEMENT_CHANNELS
        enabled = [str(channel).lower() for channel in enabled_channels]
        missing: list[str] = []

        for channel in enabled:
            transport = self._transports.get(channel)
            if transport is None:
                raise ConfigurationError(f"Unknown messaging channel '{channel}'")
            missing.extend(transport.missing_credentials())

        if missing:
            raise ConfigurationError(
                f"Missing messaging credentials: {', '.join(missing)}", missing=missing
            )

        logger.info("Messaging channels configured", channels=enabled)

    async def send(
        self, channel: str | Channel, recipient: str, text: str, **options: Any
    ) -> DispatchResult:
        channel_name = channel.value if isinstance(channel, Channel) else str(channel).lower()
        transport = self._transports.get(channel_name)

        if transport is None:
            result = DispatchResult(
                channel=channel_name,
                recipient=str(recipient),
                success=False,
                error_detail=f"Unsupported channel '{channel_name}'",
            )
        else:
            result = await transport.send(recipient, text, **options)

        log_dispatch(
            result.channel,
            result.recipient,
            result.success,
            error=result.error_detail,
            text_length=len(text or ""),
        )
        return result

    async def close(self) -> None:
        for transport in self._transports.values():
            try:
                await transport.close()
            except Exception as e:
                logger.error("Error closing transport", channel=transport.channel.value, error=str(e))


messaging_dispatcher = MessagingDispatcher.from_settings()


async def send_engagement_message(
    channel: str,
    recipient: str | None,
    text: str | None,
    dispatcher: MessagingDispatcher | None = None,
) -> DispatchResult:
    """
    Manual/operational send that bypasses the campaign pipeline.

    Raises:
        SendRequestValidationError: recipient or text missing, or unknown channel.
    """
    dispatcher = dispatcher or messaging_dispatcher

    missing = [name for name, value in (("to", recipient), ("text", text)) if not value]
    if missing:
        raise SendRequestValidationError(f"Missing required fields: {', '.join(missing)}")

    channel_name = str(channel).lower()
    if channel_name not in dispatcher.channels:
        raise SendRequestValidationError(
            f"Unsupported channel '{channel}'. Available: {', '.join(dispatcher.channels)}"
        )

    logger.info("Manual engagement send", channel=channel_name, text_length=len(text))
    return await dispatcher.send(channel_name, recipient, text)
