#!/usr/bin/env python3
"""
Crypto MA/EMA Alert Bot Launcher

Default: runs the alert checker, which will
- Re-check every enabled alert at :01, :06, ... :56 on closed candles
- Notify the Telegram chat on a fresh match, outside quiet hours
- Persist alert state to ALERTS_FILE

    python start_bot.py --query "coins above 4h EMA200 and below 1d MA100"
    python start_bot.py --check-now
"""

import argparse
import asyncio
import logging
import signal
import sys

from alert_bot import AlertBot
from config import Config


def setup_logging(verbose: bool = False):
    """Setup clean logging with minimal output"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(Config.LOG_FILE)
        ]
    )

    # Reduce noise from external libraries
    logging.getLogger('ccxt').setLevel(logging.ERROR)
    logging.getLogger('telegram').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crypto MA/EMA screener and alert bot")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--query', metavar='TEXT', help="run one scan and print the result")
    mode.add_argument('--check-now', action='store_true', help="run a single alert cycle and exit")
    parser.add_argument('--alerts-file', default=Config.ALERTS_FILE, help="alerts JSON file")
    parser.add_argument('-v', '--verbose', action='store_true', help="debug logging")
    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    bot = AlertBot(alerts_file=args.alerts_file)

    if args.query:
        try:
            print(await bot.query(args.query))
        finally:
            await bot.stop()
        return

    if args.check_now:
        try:
            report = await bot.check_now()
            print(f"Checked {report.alerts_checked} alerts: {report.alerts_triggered} triggered, "
                  f"{report.notifications_sent} notifications sent, "
                  f"{report.notifications_suppressed} suppressed")
        finally:
            await bot.stop()
        return

    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, bot.request_stop)
    except NotImplementedError:
        logger.debug("SIGTERM handler not supported on this platform")

    logger.info("🚀 Starting Crypto Alert Bot...")
    await bot.run()


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n[STOPPED] Bot manually interrupted.")
    except Exception as e:
        print(f"[ERROR] Failed to start bot: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
