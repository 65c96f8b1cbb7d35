"""Market monitor: polls live subscription and GMP figures and raises alerts.

Polling is frequent while IPOs are bidding (IST weekdays within the market
window) and slow otherwise.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from ipolens.aggregation import Aggregator
from ipolens.core.config import SchedulerConfig, get_config
from ipolens.core.interfaces import IpoRepository
from ipolens.models import DataKind, MergedIpoRecord, utcnow
from ipolens.utils.logger import get_logger, trace_context
from ipolens.utils.metrics import alerts_raised

logger = get_logger(__name__)

IST = ZoneInfo("Asia/Kolkata")


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class Alert(BaseModel):
    """One triggered alert for one IPO."""

    symbol: str
    company_name: str
    alert_type: str
    severity: AlertSeverity
    message: str
    value: float
    triggered_at: datetime = Field(default_factory=utcnow)


def is_bidding_hours(now: datetime | None = None, scheduler: SchedulerConfig | None = None) -> bool:
    """True on IST weekdays between market open and close (inclusive)."""
    scheduler = scheduler or get_config().scheduler
    now = (now or utcnow()).astimezone(IST)
    if now.weekday() >= 5:
        return False
    return scheduler.market_open <= now.time() <= scheduler.market_close


def next_poll_interval(now: datetime | None = None, scheduler: SchedulerConfig | None = None) -> int:
    """Seconds until the next poll."""
    scheduler = scheduler or get_config().scheduler
    if is_bidding_hours(now, scheduler):
        return scheduler.active_interval_seconds
    return scheduler.idle_interval_seconds


def check_alerts(
    current: MergedIpoRecord,
    previous: MergedIpoRecord | None,
    scheduler: SchedulerConfig | None = None,
) -> list[Alert]:
    """Alerts triggered by moving from ``previous`` to ``current``.

    Threshold alerts fire when a level is first reached, not on every poll.
    """
    scheduler = scheduler or get_config().scheduler
    alerts: list[Alert] = []

    def alert(alert_type: str, severity: AlertSeverity, message: str, value: float) -> None:
        alerts.append(
            Alert(
                symbol=current.symbol,
                company_name=current.company_name,
                alert_type=alert_type,
                severity=severity,
                message=message,
                value=value,
            )
        )

    total = current.subscription_total
    before = previous.subscription_total if previous else None
    if total is not None:
        for threshold, severity in (
            (scheduler.subscription_critical, AlertSeverity.CRITICAL),
            (scheduler.subscription_warning, AlertSeverity.WARNING),
        ):
            if total >= threshold:
                if before is None or before < threshold:
                    alert(
                        "subscription_threshold",
                        severity,
                        f"{current.company_name} subscribed {total:g}x (crossed {threshold:g}x)",
                        total,
                    )
                break

        if before is not None and total - before >= scheduler.subscription_momentum:
            alert(
                "subscription_momentum",
                AlertSeverity.WARNING,
                f"{current.company_name} subscription jumped {before:g}x -> {total:g}x",
                total - before,
            )

    gmp = current.gmp
    previous_gmp = previous.gmp if previous else None
    if gmp is not None and previous_gmp:
        change = (gmp - previous_gmp) / abs(previous_gmp) * 100
        if abs(change) >= scheduler.gmp_change_percent:
            rising = change > 0
            alert(
                "gmp_spike" if rising else "gmp_drop",
                AlertSeverity.INFO if rising else AlertSeverity.WARNING,
                f"{current.company_name} GMP {'up' if rising else 'down'} {abs(change):.1f}% "
                f"(₹{previous_gmp:g} -> ₹{gmp:g})",
                round(change, 2),
            )
    return alerts


class MarketMonitor:
    """Polls subscriptions and GMP and compares against the previous poll.

    On the first poll the previous values come from storage when a
    repository is given.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        repository: IpoRepository | None = None,
        scheduler: SchedulerConfig | None = None,
    ):
        self.aggregator = aggregator
        self.repository = repository
        self.scheduler = scheduler or get_config().scheduler
        self._previous: dict[str, MergedIpoRecord] = {}

    def _baseline(self, symbol: str) -> MergedIpoRecord | None:
        if symbol in self._previous:
            return self._previous[symbol]
        if self.repository is not None:
            return self.repository.find_by_symbol(symbol)
        return None

    async def poll(self) -> list[Alert]:
        """Run one poll and return the alerts it raised."""
        with trace_context("monitor"):
            result = await self.aggregator.aggregate((DataKind.SUBSCRIPTIONS, DataKind.GMP))
            alerts: list[Alert] = []
            for record in result.records:
                alerts.extend(check_alerts(record, self._baseline(record.symbol), self.scheduler))
                self._previous[record.symbol] = record

            for item in alerts:
                alerts_raised.labels(alert_type=item.alert_type, severity=item.severity.value).inc()
                logger.warning(
                    "alert_raised",
                    symbol=item.symbol,
                    alert_type=item.alert_type,
                    severity=item.severity.value,
                    message=item.message,
                )
            logger.info("monitor_poll_completed", records=len(result.records), alerts=len(alerts))
            return alerts

    async def run(
        self,
        max_polls: int | None = None,
        on_alerts: Callable[[list[Alert]], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Poll until cancelled, or ``max_polls`` times."""
        polls = 0
        while max_polls is None or polls < max_polls:
            alerts = await self.poll()
            if on_alerts is not None and alerts:
                on_alerts(alerts)
            polls += 1
            if max_polls is not None and polls >= max_polls:
                break
            interval = next_poll_interval(scheduler=self.scheduler)
            logger.debug("monitor_sleeping", seconds=interval)
            await sleep(interval)
