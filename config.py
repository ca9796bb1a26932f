import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    # Telegram Configuration
    TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN')
    TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID')  # overrides chat id stored in the alerts file

    # Storage
    ALERTS_FILE = os.getenv('ALERTS_FILE', 'alerts.json')
    LOG_FILE = os.getenv('LOG_FILE', 'crypto_alerts.log')

    # Symbol universe
    MAX_SYMBOLS_TO_SCAN = int(os.getenv('MAX_SYMBOLS_TO_SCAN', 100))  # Top X symbols by volume
    SYMBOL_CACHE_TTL_SECONDS = int(os.getenv('SYMBOL_CACHE_TTL_SECONDS', 300))
    EXCLUDED_BASES = os.getenv('EXCLUDED_BASES', 'USDC,BUSD,TUSD,USDD,USDP,DAI,FDUSD').split(',')

    # Market data
    CONCURRENT_ANALYSIS_LIMIT = int(os.getenv('CONCURRENT_ANALYSIS_LIMIT', 10))
    FETCH_TIMEOUT_SECONDS = float(os.getenv('FETCH_TIMEOUT_SECONDS', 10))

    # Alert checks
    MAX_NOTIFICATIONS_PER_ALERT = int(os.getenv('MAX_NOTIFICATIONS_PER_ALERT', 5))
    CHECK_INTERVAL_MINUTES = int(os.getenv('CHECK_INTERVAL_MINUTES', 5))  # fixed cadence
    CHECK_OFFSET_MINUTES = int(os.getenv('CHECK_OFFSET_MINUTES', 1))  # runs at :01, :06, ... :56

    # Persisted settings defaults
    DEFAULT_CHECK_INTERVAL_MINUTES = 15
    DEFAULT_TIMEZONE = os.getenv('DEFAULT_TIMEZONE', 'Asia/Kolkata')
    DEFAULT_QUIET_HOURS_START = os.getenv('DEFAULT_QUIET_HOURS_START', '23:00')
    DEFAULT_QUIET_HOURS_END = os.getenv('DEFAULT_QUIET_HOURS_END', '07:00')
    MIN_CHECK_INTERVAL_MINUTES = 5
    MAX_CHECK_INTERVAL_MINUTES = 60
