"""
Alert definitions and their JSON persistence.

The file layout (camelCase keys) is shared with existing alerts.json files:

    {
      "telegramChatId": "123",
      "checkIntervalMinutes": 15,
      "timezone": "Asia/Kolkata",
      "quietHoursStart": "23:00",
      "quietHoursEnd": "07:00",
      "alerts": [{"id": "...", "coin": "BTC", "condition": "above", ...}]
    }
"""

import json
import logging
import os
import re
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from config import Config
from exceptions import AlertValidationError, ConfigCorruptionError
from signal_models import COMPARISONS, SR_FILTERS, TIMEFRAMES, IndicatorSpec, cluster_specs, valid_periods

FREQUENCIES = ('once', 'repeat')
ANY_COIN = 'any'
COIN_SHAPE = re.compile(r"^[A-Z0-9]{2,15}$")

# Fields a caller may set; everything else belongs to the engine
DEFINITION_FIELDS = ('coin', 'condition', 'indicator', 'period', 'timeframe', 'sr_filter', 'use_trend', 'frequency')
UPDATABLE_FIELDS = DEFINITION_FIELDS + ('enabled',)

_CAMEL = {
    'sr_filter': 'srFilter',
    'use_trend': 'useTrend',
    'last_triggered': 'lastTriggered',
    'last_state': 'lastState',
    'last_state_changed_at': 'lastStateChangedAt',
    'last_checked_at': 'lastCheckedAt',
    'created_at': 'createdAt',
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_coin(coin: Any) -> str:
    if coin is None or str(coin).strip() == '':
        return ANY_COIN
    text = str(coin).strip()
    if text.lower() == ANY_COIN:
        return ANY_COIN
    return text.upper().replace('/', '')


@dataclass
class Alert:
    id: str
    coin: str = ANY_COIN
    condition: str = 'above'
    indicator: str = 'ema'
    period: int = 200
    timeframe: str = '4h'
    sr_filter: Optional[str] = None
    use_trend: bool = False
    frequency: str = 'once'
    enabled: bool = True
    last_triggered: Optional[str] = None
    last_state: Optional[str] = None  # above | below | at | away
    last_state_changed_at: Optional[str] = None
    last_checked_at: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def is_any_coin(self) -> bool:
        return self.coin == ANY_COIN

    @property
    def spec(self) -> IndicatorSpec:
        """Spec whose snapshot drives the alert state (EMA13 stands in for a cluster)"""
        if self.use_trend:
            return cluster_specs(self.timeframe)[0]
        return IndicatorSpec(self.timeframe, self.indicator, self.period)

    def specs(self) -> List[IndicatorSpec]:
        return [] if self.use_trend else [self.spec]

    def cluster_timeframes(self) -> List[str]:
        return [self.timeframe] if self.use_trend else []

    @property
    def indicator_label(self) -> str:
        if self.use_trend:
            return f"{self.timeframe} Trend (EMA 13/25/32)"
        return f"{self.timeframe} {self.indicator.upper()}{self.period}"

    def describe(self) -> str:
        coin = 'Any coin' if self.is_any_coin else self.coin
        sr = f" ({self.sr_filter})" if self.sr_filter else ''
        return f"{coin} {self.condition} {self.indicator_label}{sr} [{self.frequency}]"

    def reset_state(self):
        self.last_state = None
        self.last_state_changed_at = None
        self.last_checked_at = None

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for name in self.__dataclass_fields__:
            data[_CAMEL.get(name, name)] = getattr(self, name)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Alert':
        kwargs = {}
        for name in cls.__dataclass_fields__:
            key = _CAMEL.get(name, name)
            if key in data:
                kwargs[name] = data[key]
        if not kwargs.get('id'):
            kwargs['id'] = str(uuid.uuid4())
        return cls(**kwargs)


def validate_alert_fields(fields: Mapping[str, Any]) -> List[str]:
    """Reasons the definition is unusable; empty when valid"""
    reasons = []
    coin = normalize_coin(fields.get('coin'))
    if coin != ANY_COIN and not COIN_SHAPE.match(coin):
        reasons.append(f"Invalid coin: {fields.get('coin')}")

    if fields.get('condition') not in COMPARISONS:
        reasons.append(f"Invalid condition: {fields.get('condition')} (expected one of {', '.join(COMPARISONS)})")

    timeframe = fields.get('timeframe')
    if timeframe not in TIMEFRAMES:
        reasons.append(f"Invalid timeframe: {timeframe}")

    if not fields.get('use_trend'):
        kind = fields.get('indicator')
        if kind not in ('ma', 'ema'):
            reasons.append(f"Invalid indicator: {kind} (expected ma or ema)")
        else:
            period = fields.get('period')
            if period not in valid_periods(kind):
                allowed = ', '.join(str(p) for p in valid_periods(kind))
                reasons.append(f"Invalid {kind.upper()} period: {period} (expected one of {allowed})")

    sr_filter = fields.get('sr_filter')
    if sr_filter is not None and sr_filter not in SR_FILTERS:
        reasons.append(f"Invalid support/resistance filter: {sr_filter}")

    if fields.get('frequency') not in FREQUENCIES:
        reasons.append(f"Invalid frequency: {fields.get('frequency')} (expected once or repeat)")

    if 'enabled' in fields and not isinstance(fields['enabled'], bool):
        reasons.append("enabled must be true or false")

    return reasons


def build_alert(data: Mapping[str, Any]) -> Alert:
    """New Alert from caller-supplied fields, defaults filled in. Raises AlertValidationError."""
    defaults = Alert(id='')
    fields = {name: data.get(name, getattr(defaults, name)) for name in DEFINITION_FIELDS}
    fields['coin'] = normalize_coin(fields['coin'])
    if fields['sr_filter'] == '':
        fields['sr_filter'] = None
    if isinstance(fields['period'], str) and fields['period'].isdigit():
        fields['period'] = int(fields['period'])

    reasons = validate_alert_fields(fields)
    if reasons:
        raise AlertValidationError(reasons)
    return Alert(id=str(uuid.uuid4()), created_at=utc_now_iso(), **fields)


@dataclass
class AlertConfig:
    telegram_chat_id: Optional[str] = None
    check_interval_minutes: int = Config.DEFAULT_CHECK_INTERVAL_MINUTES
    timezone: str = Config.DEFAULT_TIMEZONE
    quiet_hours_start: Optional[str] = Config.DEFAULT_QUIET_HOURS_START
    quiet_hours_end: Optional[str] = Config.DEFAULT_QUIET_HOURS_END
    alerts: List[Alert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'telegramChatId': self.telegram_chat_id,
            'checkIntervalMinutes': self.check_interval_minutes,
            'timezone': self.timezone,
            'quietHoursStart': self.quiet_hours_start,
            'quietHoursEnd': self.quiet_hours_end,
            'alerts': [alert.to_dict() for alert in self.alerts],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'AlertConfig':
        defaults = cls()
        chat_id = data.get('telegramChatId')
        return cls(
            telegram_chat_id=str(chat_id) if chat_id is not None else None,
            check_interval_minutes=int(data.get('checkIntervalMinutes', defaults.check_interval_minutes)),
            timezone=data.get('timezone') or defaults.timezone,
            quiet_hours_start=data.get('quietHoursStart', defaults.quiet_hours_start),
            quiet_hours_end=data.get('quietHoursEnd', defaults.quiet_hours_end),
            alerts=[Alert.from_dict(item) for item in data.get('alerts') or []],
        )


class AlertStore:
    """JSON file holding alert definitions, their state, and engine settings"""

    def __init__(self, path: str = Config.ALERTS_FILE):
        self.path = path
        self.logger = logging.getLogger(__name__)

    def _read(self) -> AlertConfig:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ConfigCorruptionError(f"{self.path}: expected a JSON object")
            return AlertConfig.from_dict(data)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            raise ConfigCorruptionError(f"{self.path}: {e}") from e

    def load(self) -> AlertConfig:
        """Stored config merged over defaults. Missing file is created, unreadable file falls back to defaults."""
        if not os.path.exists(self.path):
            config = AlertConfig()
            self.save(config)
            self.logger.info(f"Created new alerts config file {self.path}")
            return config

        try:
            config = self._read()
        except ConfigCorruptionError as e:
            self.logger.warning(f"⚠️ Alerts config unreadable, using defaults: {e}")
            return AlertConfig()

        self.logger.info(f"Loaded {len(config.alerts)} alerts from {self.path}")
        return config

    def save(self, config: AlertConfig) -> bool:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.alerts-', suffix='.json', dir=directory)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(config.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
            return True
        except OSError as e:
            self.logger.error(f"Error saving alerts config: {e}")
            return False
