"""
Standing alerts: scheduled re-evaluation, edge-triggered notification and
quiet hours.

Checks run one minute after every 5-minute candle close (:01, :06, ... :56)
so the last closed candle is settled data.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from alert_store import (
    DEFINITION_FIELDS,
    UPDATABLE_FIELDS,
    Alert,
    AlertStore,
    build_alert,
    normalize_coin,
    validate_alert_fields,
)
from config import Config
from data_fetcher import normalize_pair
from exceptions import AlertValidationError
from market_scanner import MarketScanner, position_of
from signal_matcher import condition_matches
from signal_models import IndicatorCondition
from telegram_bot import TelegramAlertBot
from trend_utils import cluster_state


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def parse_hhmm(value: Union[str, time]) -> time:
    if isinstance(value, time):
        return value
    hours, minutes = str(value).strip().split(':')
    return time(int(hours), int(minutes))


def is_quiet_time(current: time, start: Optional[Union[str, time]], end: Optional[Union[str, time]]) -> bool:
    """
    Window membership, start inclusive and end exclusive.
    A window with start > end wraps midnight (23:00-07:00).
    """
    if not start or not end:
        return False
    start_minutes = _minutes(parse_hhmm(start))
    end_minutes = _minutes(parse_hhmm(end))
    now_minutes = _minutes(current)

    if start_minutes > end_minutes:
        return now_minutes >= start_minutes or now_minutes < end_minutes
    return start_minutes <= now_minutes < end_minutes


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def millis_until_next_check(now: datetime, interval_minutes: int = Config.CHECK_INTERVAL_MINUTES,
                            offset_minutes: int = Config.CHECK_OFFSET_MINUTES) -> int:
    """Milliseconds from ``now`` to the next :01/:06/.../:56 check minute"""
    check_minutes = range(offset_minutes, 60, interval_minutes)
    next_minute = next((m for m in check_minutes if m > now.minute), None)
    if next_minute is not None:
        minutes_to_wait = next_minute - now.minute
    else:
        minutes_to_wait = 60 - now.minute + check_minutes[0]
    return minutes_to_wait * 60_000 - now.second * 1000 - now.microsecond // 1000


def next_check_time(now: datetime, interval_minutes: int = Config.CHECK_INTERVAL_MINUTES,
                    offset_minutes: int = Config.CHECK_OFFSET_MINUTES) -> datetime:
    return now + timedelta(milliseconds=millis_until_next_check(now, interval_minutes, offset_minutes))


def format_price(value: float) -> str:
    if value >= 100:
        decimals = 2
    elif value >= 1:
        decimals = 4
    else:
        decimals = 6
    return f"${value:,.{decimals}f}"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class TriggeredCoin:
    symbol: str
    price: float
    indicator_value: float
    diff_percent: float
    current_state: str
    previous_state: Optional[str] = None
    transitioned: bool = False
    support_resistance: Optional[str] = None


@dataclass
class CycleReport:
    started_at: datetime
    alerts_checked: int = 0
    alerts_triggered: int = 0
    notifications_sent: int = 0
    notifications_suppressed: int = 0
    errors: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class AlertEngine:
    """
    Owns the alert list and every state field on it. Callers mutate
    definitions only through create/update/delete/set_enabled.
    """

    def __init__(self, store: AlertStore, scanner: MarketScanner, notifier: TelegramAlertBot,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
                 max_notifications: int = Config.MAX_NOTIFICATIONS_PER_ALERT,
                 max_symbols: int = Config.MAX_SYMBOLS_TO_SCAN,
                 chat_id_override: Optional[str] = Config.TELEGRAM_CHAT_ID):
        self.store = store
        self.scanner = scanner
        self.notifier = notifier
        self._clock = clock
        self.max_notifications = max_notifications
        self.max_symbols = max_symbols
        self.logger = logging.getLogger(__name__)

        self.config = store.load()
        if chat_id_override:
            self.config.telegram_chat_id = str(chat_id_override)
            self.logger.info("Using Telegram chat ID from environment variable")

        self.started_at = self._clock()
        self.last_cycle_at: Optional[datetime] = None
        self._cycle_lock = asyncio.Lock()

    def save(self) -> bool:
        return self.store.save(self.config)

    # ---- CRUD -------------------------------------------------------------

    @property
    def alerts(self) -> List[Alert]:
        return self.config.alerts

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        return next((a for a in self.config.alerts if a.id == alert_id), None)

    def create_alert(self, data: Mapping[str, Any]) -> Alert:
        alert = build_alert(data)
        self.config.alerts.append(alert)
        self.save()
        self.logger.info(f"Created alert {alert.id}: {alert.describe()}")
        return alert

    def update_alert(self, alert_id: str, updates: Mapping[str, Any]) -> Optional[Alert]:
        """Apply caller-settable fields. State resets when the definition changes."""
        alert = self.get_alert(alert_id)
        if alert is None:
            return None

        changes = {k: v for k, v in updates.items()
                   if k in UPDATABLE_FIELDS and (v is not None or k == 'sr_filter')}
        if changes.get('sr_filter') == '':
            changes['sr_filter'] = None
        if 'coin' in changes:
            changes['coin'] = normalize_coin(changes['coin'])
        candidate = dataclasses.replace(alert, **changes)
        reasons = validate_alert_fields(dataclasses.asdict(candidate))
        if reasons:
            raise AlertValidationError(reasons)

        definition_changed = any(getattr(candidate, k) != getattr(alert, k) for k in DEFINITION_FIELDS)
        for name, value in changes.items():
            setattr(alert, name, value)
        if definition_changed:
            alert.reset_state()

        self.save()
        return alert

    def delete_alert(self, alert_id: str) -> bool:
        alert = self.get_alert(alert_id)
        if alert is None:
            return False
        self.config.alerts.remove(alert)
        self.save()
        return True

    def set_enabled(self, alert_id: str, enabled: bool) -> Optional[Alert]:
        return self.update_alert(alert_id, {'enabled': bool(enabled)})

    # ---- Settings ---------------------------------------------------------

    def get_settings(self) -> Dict[str, Any]:
        return {
            'checkIntervalMinutes': self.config.check_interval_minutes,
            'timezone': self.config.timezone,
            'quietHoursStart': self.config.quiet_hours_start,
            'quietHoursEnd': self.config.quiet_hours_end,
        }

    def update_settings(self, settings: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate every key, then apply all of them or none"""
        reasons = []
        changes = {}

        interval = settings.get('checkIntervalMinutes')
        if interval is not None:
            try:
                # informational only, the check cadence is the fixed 5-minute grid
                changes['check_interval_minutes'] = max(Config.MIN_CHECK_INTERVAL_MINUTES,
                                                        min(Config.MAX_CHECK_INTERVAL_MINUTES, int(interval)))
            except (TypeError, ValueError):
                reasons.append(f"Invalid checkIntervalMinutes: {interval}")

        tz_name = settings.get('timezone')
        if tz_name:
            try:
                ZoneInfo(tz_name)
                changes['timezone'] = tz_name
            except (ZoneInfoNotFoundError, ValueError):
                reasons.append(f"Unknown timezone: {tz_name}")

        for key, attr in (('quietHoursStart', 'quiet_hours_start'), ('quietHoursEnd', 'quiet_hours_end')):
            if key not in settings:
                continue
            value = settings[key]
            if value:
                try:
                    parse_hhmm(value)
                except ValueError:
                    reasons.append(f"Invalid {key}: {value} (expected HH:MM)")
                    continue
            changes[attr] = value or None

        if reasons:
            raise AlertValidationError(reasons)

        for attr, value in changes.items():
            setattr(self.config, attr, value)
        self.save()
        return self.get_settings()

    def _zone(self):
        try:
            return ZoneInfo(self.config.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            self.logger.warning(f"Unknown timezone {self.config.timezone}, using UTC")
            return timezone.utc

    def is_quiet_hours(self, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        local = now.astimezone(self._zone())
        try:
            return is_quiet_time(local.time(), self.config.quiet_hours_start, self.config.quiet_hours_end)
        except ValueError as e:
            self.logger.error(f"Error checking quiet hours: {e}")
            return False

    # ---- Evaluation -------------------------------------------------------

    async def _symbols_for(self, alert: Alert) -> List[str]:
        if alert.is_any_coin:
            return await self.scanner.universe.get_ranked_symbols(self.max_symbols)
        return [normalize_pair(alert.coin)]

    async def evaluate_alert(self, alert: Alert, now: Optional[datetime] = None) -> List[TriggeredCoin]:
        """
        Triggered coins for one alert, advancing its state fields.

        The condition is checked with the scan matcher's flags. The state
        label is the alert's own condition while it holds, otherwise the
        first of above / below / at / away.

        once:   fires whenever the condition holds.
        repeat: fires on the first check if the condition holds, afterwards
                only on a transition into the condition.
        Any-coin alerts keep no per-symbol state, only last_checked_at.
        """
        now_iso = (now or self._clock()).isoformat()
        symbols = await self._symbols_for(alert)
        snapshots = await self.scanner.snapshot_many(
            symbols, alert.specs(), alert.cluster_timeframes(), detect_support_resistance=bool(alert.sr_filter)
        )

        condition = IndicatorCondition(
            spec=alert.spec,
            comparison=alert.condition,
            is_cluster_member=alert.use_trend,
            cluster_timeframe=alert.timeframe if alert.use_trend else None,
        )

        triggered: List[TriggeredCoin] = []
        for symbol in symbols:
            snapshot = (snapshots.get(symbol) or {}).get(alert.spec)
            if snapshot is None:
                continue

            if alert.use_trend:
                reading = snapshot.cluster
                if reading is None:
                    continue
                fallback_state = cluster_state(reading)
                indicator_value = reading.cluster_mid
                diff_percent = abs(snapshot.price - reading.cluster_mid) / reading.cluster_mid
                support_resistance = reading.support_resistance or snapshot.support_resistance
                sr_candidates = (reading.support_resistance, snapshot.support_resistance)
            else:
                fallback_state = position_of(snapshot)
                indicator_value = snapshot.indicator_value
                diff_percent = snapshot.diff_percent
                support_resistance = snapshot.support_resistance
                sr_candidates = (snapshot.support_resistance,)

            condition_met = condition_matches(snapshot, condition)
            state = alert.condition if condition_met else fallback_state
            previous = alert.last_state
            transitioned = previous is not None and previous != state

            if alert.frequency == 'once' or previous is None:
                should_trigger = condition_met
            else:
                should_trigger = transitioned and condition_met

            if not alert.is_any_coin:
                alert.last_state = state
                alert.last_checked_at = now_iso
                if transitioned:
                    alert.last_state_changed_at = now_iso

            if not should_trigger:
                continue
            if alert.sr_filter and alert.sr_filter not in sr_candidates:
                continue

            triggered.append(TriggeredCoin(
                symbol=symbol,
                price=snapshot.price,
                indicator_value=indicator_value,
                diff_percent=diff_percent,
                current_state=state,
                previous_state=previous,
                transitioned=transitioned,
                support_resistance=support_resistance,
            ))

        if alert.is_any_coin:
            alert.last_checked_at = now_iso
        return triggered

    async def run_alert_cycle(self) -> CycleReport:
        """Check every enabled alert once, notify, persist. Cycles never overlap."""
        async with self._cycle_lock:
            now = self._clock()
            self.last_cycle_at = now
            report = CycleReport(started_at=now)

            enabled = [a for a in self.config.alerts if a.enabled]
            if not enabled:
                self.logger.info(f"Alert check completed at {now.isoformat()} - no enabled alerts")
                return report

            self.logger.info(f"🔍 Checking {len(enabled)} alerts...")
            quiet = self.is_quiet_hours(now)

            for alert in enabled:
                report.alerts_checked += 1
                try:
                    coins = await self.evaluate_alert(alert, now)
                except Exception as e:
                    self.logger.error(f"❌ Error checking alert {alert.id}: {e}")
                    report.errors.append(f"{alert.id}: {e}")
                    continue

                if not coins:
                    continue
                report.alerts_triggered += 1

                for coin in coins[:self.max_notifications]:
                    if quiet:
                        report.notifications_suppressed += 1
                        self.logger.info(f"Quiet hours active, skipping notification for {coin.symbol}")
                        continue
                    try:
                        sent = await self.notifier.send(self.config.telegram_chat_id,
                                                        self.format_notification(alert, coin))
                    except Exception as e:
                        self.logger.error(f"❌ Failed to notify {coin.symbol} for alert {alert.id}: {e}")
                        report.errors.append(f"{alert.id}: notify {coin.symbol}: {e}")
                        continue
                    if sent:
                        report.notifications_sent += 1
                        self.logger.info(f"📨 Notification sent for {coin.symbol}"
                                         f"{' (state transition)' if coin.transitioned else ''}")

                alert.last_triggered = now.isoformat()
                if alert.frequency == 'once':
                    alert.enabled = False
                    self.logger.info(f"One-time alert {alert.id} disabled after triggering")

            self.save()
            self.logger.info(
                f"✅ Alert check complete: {report.alerts_triggered}/{report.alerts_checked} triggered, "
                f"{report.notifications_sent} sent, {report.notifications_suppressed} suppressed"
            )
            return report

    # ---- Text ----------------------------------------------------------------

    def format_notification(self, alert: Alert, coin: TriggeredCoin) -> str:
        sr_label = f" [{coin.support_resistance.upper()}]" if coin.support_resistance else ''
        transition = ''
        if coin.transitioned and coin.previous_state:
            transition = f"\n🔄 Crossed from <b>{coin.previous_state}</b> → <b>{coin.current_state}</b>"

        return (
            f"🚨 <b>Alert Triggered!</b>\n\n"
            f"<b>{coin.symbol}</b> is {alert.condition} {alert.indicator_label}{sr_label}{transition}\n\n"
            f"💰 Price: {format_price(coin.price)}\n"
            f"📊 Indicator: {format_price(coin.indicator_value)}\n"
            f"📈 Diff: {coin.diff_percent * 100:.2f}%"
        )

    def status(self) -> Dict[str, Any]:
        return {
            'total_alerts': len(self.config.alerts),
            'enabled_alerts': sum(1 for a in self.config.alerts if a.enabled),
            'started_at': self.started_at.isoformat(),
            'last_cycle_at': self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            'quiet_hours_active': self.is_quiet_hours(),
            'telegram_configured': self.notifier.configured and bool(self.config.telegram_chat_id),
            **self.get_settings(),
        }

    def format_alert_list(self) -> str:
        enabled = [a for a in self.config.alerts if a.enabled]
        if not enabled:
            return 'No active alerts configured.'
        lines = [f"{i}. {alert.describe()}" for i, alert in enumerate(enabled, 1)]
        return "Active Alerts:\n\n" + "\n".join(lines)


def format_status(status: Mapping[str, Any]) -> str:
    lines = [
        f"Bot Status: {'Active' if status.get('running') else 'Stopped'}",
        f"Active Alerts: {status['enabled_alerts']}/{status['total_alerts']}",
        f"Quiet Hours: {status['quietHoursStart']} - {status['quietHoursEnd']} ({status['timezone']})"
        + (' [active]' if status.get('quiet_hours_active') else ''),
        f"Last check: {status.get('last_cycle_at') or 'never'}",
    ]
    if status.get('next_check_at'):
        lines.append(f"Next check: {status['next_check_at']} (in {status['seconds_until_next']}s)")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class AlertScheduler:
    """
    One-shot wait to the next check minute, then a fixed repeating interval.
    A cycle that overruns its slot skips the missed ticks.
    """

    def __init__(self, engine: AlertEngine, interval_seconds: float = Config.CHECK_INTERVAL_MINUTES * 60,
                 first_delay: Optional[Callable[[datetime], float]] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._first_delay = first_delay or (lambda now: millis_until_next_check(now) / 1000)
        self._clock = clock
        self._initial_task: Optional[asyncio.Task] = None
        self._repeat_task: Optional[asyncio.Task] = None
        self.cycles_run = 0
        self.logger = logging.getLogger(__name__)

    @property
    def running(self) -> bool:
        return any(task is not None and not task.done() for task in (self._initial_task, self._repeat_task))

    def start(self):
        """Arm the checker. Must be called from inside a running event loop."""
        self._cancel_tasks()
        now = self._clock()
        delay = self._first_delay(now)
        self.logger.info(f"Alert checker starting, next check at {(now + timedelta(seconds=delay)):%H:%M:%S} "
                         f"(in {round(delay)} seconds), then every {self.interval_seconds / 60:g} minutes")
        self._initial_task = asyncio.create_task(self._run_initial(delay))

    async def _run_initial(self, delay: float):
        await asyncio.sleep(delay)
        await self._run_cycle()
        self._repeat_task = asyncio.create_task(self._run_repeating())

    async def _run_repeating(self):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.interval_seconds
        while True:
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            await self._run_cycle()
            deadline += self.interval_seconds
            while deadline <= loop.time():
                deadline += self.interval_seconds

    async def _run_cycle(self):
        try:
            await self.engine.run_alert_cycle()
        except Exception as e:
            self.logger.error(f"❌ Scheduled alert check failed: {e}")
        self.cycles_run += 1

    def _cancel_tasks(self) -> List[asyncio.Task]:
        tasks = [t for t in (self._initial_task, self._repeat_task) if t is not None]
        for task in tasks:
            task.cancel()
        self._initial_task = None
        self._repeat_task = None
        return tasks

    async def stop(self):
        """Cancel both the pending one-shot wait and the repeating timer"""
        tasks = self._cancel_tasks()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            self.logger.info("Alert checker stopped")

    def status(self) -> Dict[str, Any]:
        now = self._clock()
        status = self.engine.status()
        status['running'] = self.running
        if self.running:
            wait_ms = millis_until_next_check(now)
            status['next_check_at'] = (now + timedelta(milliseconds=wait_ms)).isoformat(timespec='seconds')
            status['seconds_until_next'] = round(wait_ms / 1000)
        return status
