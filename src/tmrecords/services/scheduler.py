"""
新記録チェックの定期実行

毎日決まった時刻（既定は Europe/Paris の 4 時）に全購読の新記録と
ドライバーの順位変化を確認し、メールで通知する。1 件の失敗で全体を止めない。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from tmrecords.services.account_names import AccountNameService
from tmrecords.services.alerts import AlertRepository, AlertSubscription, DriverSubscription
from tmrecords.services.drivers import DriverPositionChange, check_driver_positions, format_driver_change
from tmrecords.services.leaderboards import LeaderboardService
from tmrecords.services.notifications import Mailer, collect_account_ids, format_new_records

logger = logging.getLogger(__name__)


@dataclass
class CheckSummary:
    """1 回のチェック結果

    Attributes:
        checked: 確認した購読数
        notified: 通知メールを送信した購読者
        failed: 取得または送信に失敗した購読者
    """
    checked: int = 0
    notified: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class AlertScheduler:
    """購読者ごとに新記録を確認して通知する"""

    def __init__(
        self,
        leaderboards: LeaderboardService,
        repository: AlertRepository,
        mailer: Mailer,
        account_names: Optional[AccountNameService] = None,
        *,
        hour: int = 4,
        timezone: str = "Europe/Paris",
        period: str = "1d",
    ) -> None:
        self._leaderboards = leaderboards
        self._repository = repository
        self._mailer = mailer
        self._account_names = account_names
        self.hour = hour
        self.tz = ZoneInfo(timezone)
        self.period = period

    async def check_new_records_and_send_alerts(self) -> CheckSummary:
        """全購読の新記録を確認してメールを送信する"""
        logger.info("Running scheduled check...")
        summary = CheckSummary()

        try:
            alerts = self._repository.list_alerts()
        except Exception:
            logger.exception("Error during scheduled check: failed to load alerts")
            return summary

        for alert in alerts:
            summary.checked += 1
            try:
                sent = await self._process_alert(alert)
            except Exception:
                logger.exception("Failed to process alert for %s", alert.username)
                summary.failed.append(alert.username)
                continue
            if sent:
                summary.notified.append(alert.username)

        logger.info(
            "Scheduled check finished: checked=%d notified=%d failed=%d",
            summary.checked,
            len(summary.notified),
            len(summary.failed),
        )
        return summary

    async def _process_alert(self, alert: AlertSubscription) -> bool:
        records = await self._leaderboards.fetch_maps_and_leaderboards(alert.username, self.period)
        if not records:
            logger.info("No new records for %s", alert.username)
            return False

        names = {}
        if self._account_names is not None:
            names = await self._account_names.translate(collect_account_ids(records))

        body = format_new_records(records, names, tz=self.tz)
        await self._mailer.send(
            alert.email,
            f"New times in {alert.username}'s maps",
            f"New times have been driven on your map(s):\n\n{body}",
        )
        return True

    async def check_driver_positions_and_send_alerts(self) -> CheckSummary:
        """ドライバー購読の順位変化を確認して通知する

        通知先ごとに 1 通にまとめる。送信できた変化だけを保存済みの順位に
        反映し、送信に失敗した分は次回の確認で再び通知対象になる。
        """
        logger.info("Running driver position check...")
        summary = CheckSummary()

        try:
            drivers = self._repository.list_drivers()
        except Exception:
            logger.exception("Error during driver check: failed to load driver subscriptions")
            return summary

        summary.checked = len(drivers)
        if not drivers:
            return summary

        changes = await check_driver_positions(self._leaderboards, drivers)
        by_email: Dict[str, List[DriverPositionChange]] = {}
        for change in changes:
            by_email.setdefault(change.subscription.email, []).append(change)

        updated: Dict[DriverSubscription, DriverSubscription] = {}
        for email, items in by_email.items():
            body = "\n\n".join(format_driver_change(change) for change in items)
            try:
                await self._mailer.send(email, "Driver position update", body)
            except Exception:
                logger.exception("Failed to send driver notification to %s", email)
                summary.failed.append(email)
                continue
            summary.notified.append(email)
            for change in items:
                updated[change.subscription] = change.updated_subscription()

        if updated:
            try:
                self._repository.save_drivers([updated.get(driver, driver) for driver in drivers])
            except Exception:
                logger.exception("Failed to save driver positions")

        logger.info(
            "Driver check finished: checked=%d notified=%d failed=%d",
            summary.checked,
            len(summary.notified),
            len(summary.failed),
        )
        return summary

    async def run_scheduled_checks(self) -> Tuple[CheckSummary, CheckSummary]:
        """マッパー通知とドライバー通知を順に実行する"""
        records = await self.check_new_records_and_send_alerts()
        drivers = await self.check_driver_positions_and_send_alerts()
        return records, drivers

    def seconds_until_next_run(self, now: Optional[datetime] = None) -> float:
        """次回実行時刻までの秒数を返す（夏時間を考慮）"""
        current = (now or datetime.now(self.tz)).astimezone(self.tz)
        target = current.replace(hour=self.hour, minute=0, second=0, microsecond=0)
        if target <= current:
            target = target + timedelta(days=1)
        # 同一 tzinfo 同士の減算は壁時計の差になるため UTC で比較する
        return (target.astimezone(timezone.utc) - current.astimezone(timezone.utc)).total_seconds()

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """停止要求があるまで毎日チェックを実行する"""
        stop = stop_event or asyncio.Event()
        while not stop.is_set():
            delay = self.seconds_until_next_run()
            logger.info("Next scheduled check in %.0f seconds", delay)
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                await self.run_scheduled_checks()
