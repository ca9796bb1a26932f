import asyncio
import logging
from typing import Optional

from alert_engine import AlertEngine, AlertScheduler, CycleReport, format_status
from alert_store import AlertStore
from config import Config
from data_fetcher import DataFetcher
from market_scanner import MarketScanner
from telegram_bot import TelegramAlertBot


class AlertBot:
    def __init__(self, alerts_file: str = Config.ALERTS_FILE):
        """Wire market data, scanner, notifier and alert engine together"""
        self.logger = logging.getLogger(__name__)

        self.fetcher = DataFetcher()
        self.universe = self.fetcher.build_universe()
        self.scanner = MarketScanner(self.fetcher, self.universe)
        self.telegram_bot = TelegramAlertBot()
        self.engine = AlertEngine(AlertStore(alerts_file), self.scanner, self.telegram_bot)
        self.scheduler = AlertScheduler(self.engine)

        self._stopped = asyncio.Event()

    async def initialize(self) -> bool:
        """Warm the symbol cache and test Telegram. Only an empty universe is fatal."""
        symbols = await self.universe.get_ranked_symbols(Config.MAX_SYMBOLS_TO_SCAN)
        if not symbols:
            self.logger.error("❌ No symbols available from any exchange")
            return False
        self.logger.info(f"✅ Symbol universe loaded: {len(symbols)} coins")

        if await self.telegram_bot.test_connection():
            self.logger.info("✅ Telegram bot connection established")
        else:
            self.logger.warning("⚠️ Telegram unavailable, alerts will be evaluated but not delivered")
        return True

    async def run(self):
        """Run the scheduled alert checker until stopped"""
        self.logger.info("🚀 AlertBot starting...")

        try:
            if not await self.initialize():
                self.logger.error("❌ Failed to initialize. Exiting.")
                return

            self.scheduler.start()
            self.logger.info(f"✅ AlertBot initialized with {len(self.engine.alerts)} alerts")
            await self.telegram_bot.send_status_message(
                self.engine.config.telegram_chat_id, format_status(self.scheduler.status())
            )
            await self._stopped.wait()
        except asyncio.CancelledError:
            self.logger.info("🛑 Bot stopped by user")
        finally:
            await self.stop()

    async def check_now(self) -> CycleReport:
        return await self.engine.run_alert_cycle()

    async def query(self, text: str) -> str:
        return await self.scanner.answer(text)

    def request_stop(self):
        self.logger.info("🛑 Stop requested")
        self._stopped.set()

    async def stop(self, reason: Optional[str] = None):
        """Cleanup resources"""
        await self.scheduler.stop()
        await self.fetcher.close()
        await self.telegram_bot.close()
        self.logger.info(f"✅ AlertBot stopped{f': {reason}' if reason else ''}")
