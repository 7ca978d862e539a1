"""
Telegram Notifier - Best-Effort Operator Messages

Sends plain-text messages through the Telegram Bot API. Delivery is best
effort: missing configuration or a failed send is logged and never raised.
"""

import logging

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.config import settings

logger = logging.getLogger(__name__)

MESSAGE_PREFIX = "[icare] "


class TelegramNotifier:
    """Telegram Bot API sender with transport-level retries."""

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.bot_token = settings.TELEGRAM_BOT_TOKEN if bot_token is None else bot_token
        self.chat_id = settings.TELEGRAM_CHAT_ID if chat_id is None else chat_id
        self.api_base = (api_base or settings.TELEGRAM_API_BASE).rstrip("/")
        self.timeout = timeout or settings.TELEGRAM_TIMEOUT
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _post_message(self, text: str) -> None:
        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(url, json={"chat_id": self.chat_id, "text": text})
            response.raise_for_status()

    async def send(self, message: str) -> bool:
        """
        Send a message to the configured chat.

        Args:
            message: Text without the service prefix

        Returns:
            True if Telegram accepted the message
        """
        if not self.configured:
            logger.warning("Telegram not configured, message not sent")
            return False

        try:
            await self._post_message(MESSAGE_PREFIX + message)
        except httpx.HTTPError as e:
            logger.error("Failed to send Telegram message", extra={"error": str(e)})
            return False

        return True
