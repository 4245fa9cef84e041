"""Telegram delivery for keeper messages.

Routine tend logs go out through a muted log bot. Anything an operator has to
act on goes out through the alert bot with sound on.
"""
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

SEND_URL = "https://api.telegram.org/bot{token}/sendMessage"
# Telegram rejects longer texts outright.
MAX_MESSAGE_LENGTH = 4096


def _clip(text: str) -> str:
    if len(text) <= MAX_MESSAGE_LENGTH:
        return text
    return text[: MAX_MESSAGE_LENGTH - 1] + "…"


class TelegramNotifier:
    def __init__(self, config: TelegramConfig) -> None:
        self._config = config
        self._ssl = ssl.create_default_context(cafile=certifi.where())

    async def _deliver(self, token: str, text: str, *, muted: bool) -> bool:
        chat_id = self._config.chat_id
        if not token or not chat_id:
            logger.warning("Telegram bot token or chat id missing, message dropped")
            return False

        body = {
            "chat_id": chat_id,
            "text": _clip(text),
            "parse_mode": "HTML",
            "disable_notification": muted,
            "disable_web_page_preview": True,
        }
        connector = aiohttp.TCPConnector(ssl=self._ssl)
        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(SEND_URL.format(token=token), json=body) as response:
                if response.status == 200:
                    return True
                detail = await response.text()
                logger.error(
                    "Telegram refused message (HTTP %s): %s", response.status, detail[:200]
                )
                return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Loud message on the alert bot, headed by ``subject`` in bold."""
        if subject:
            message = f"<b>{html.escape(subject)}</b>\n\n{message}"
        sent = await self._deliver(self._config.alert_bot_token, message, muted=False)
        if sent:
            logger.info("Alert delivered: %s", subject or "report")
        return sent

    async def send_log(self, message: str, silent: bool = True) -> bool:
        return await self._deliver(self._config.log_bot_token, message, muted=silent)
