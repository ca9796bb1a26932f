import logging
from typing import Optional

from telegram import Bot
from telegram.error import TelegramError

from config import Config


class TelegramAlertBot:
    """Notification channel: delivers alert and status messages to a Telegram chat"""

    def __init__(self, token: Optional[str] = Config.TELEGRAM_BOT_TOKEN, bot: Optional[Bot] = None):
        self.bot = bot if bot is not None else (Bot(token=token) if token else None)
        self.logger = logging.getLogger(__name__)
        self.messages_sent = 0

    @property
    def configured(self) -> bool:
        return self.bot is not None

    async def send(self, destination: Optional[str], message: str) -> bool:
        """Send one HTML message. Failures are logged, never raised."""
        if self.bot is None or not destination:
            self.logger.info("Telegram not configured, skipping notification")
            return False
        try:
            await self.bot.send_message(
                chat_id=destination,
                text=message,
                parse_mode='HTML'
            )
            self.messages_sent += 1
            return True
        except TelegramError as e:
            self.logger.error(f"Failed to send message to {destination}: {e}")
            return False

    async def send_status_message(self, destination: Optional[str], message: str) -> bool:
        """Send status/info message to channel"""
        return await self.send(destination, f"🤖 <b>Bot Status:</b> {message}")

    async def test_connection(self) -> bool:
        """Test Telegram bot connection"""
        if self.bot is None:
            self.logger.warning("No TELEGRAM_BOT_TOKEN set, notifications disabled")
            return False
        try:
            bot_info = await self.bot.get_me()
            self.logger.info(f"Bot connected successfully: @{bot_info.username}")
            return True
        except TelegramError as e:
            self.logger.error(f"Bot connection failed: {e}")
            return False

    async def close(self):
        if self.bot is None:
            return
        try:
            await self.bot.shutdown()
        except TelegramError as e:
            self.logger.debug(f"Error shutting down Telegram bot: {e}")
