"""
ドライバー順位の変化検知

購読時に保存した順位とタイムを、リーダーボード上位 100 件の現在値と比較する。
順位かタイムが良くなった場合、または順位が下がった場合に通知対象とする。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional

from tmrecords.errors import TmException
from tmrecords.services.alerts import DriverSubscription
from tmrecords.services.formatting import format_time_difference
from tmrecords.services.leaderboards import LeaderboardRecord, LeaderboardService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverPositionChange:
    """購読時点からの順位とタイムの変化

    Attributes:
        subscription: 比較元の購読
        new_position: 現在の順位
        new_score: 現在のタイム（ミリ秒）
    """
    subscription: DriverSubscription
    new_position: int
    new_score: Optional[int]

    @property
    def score_improved(self) -> bool:
        old = self.subscription.score
        return old is not None and self.new_score is not None and self.new_score < old

    @property
    def improved(self) -> bool:
        return self.new_position < self.subscription.position or self.score_improved

    @property
    def worsened(self) -> bool:
        return not self.improved and self.new_position > self.subscription.position

    def updated_subscription(self) -> DriverSubscription:
        """現在値を保存済みの値として持つ購読を返す"""
        return replace(self.subscription, position=self.new_position, score=self.new_score)


def find_driver_record(
    subscription: DriverSubscription, records: Iterable[LeaderboardRecord]
) -> Optional[LeaderboardRecord]:
    for record in records:
        if subscription.account_id and record.account_id == subscription.account_id:
            return record
        if subscription.username and record.login == subscription.username:
            return record
    return None


def compare_driver_position(
    subscription: DriverSubscription, records: Iterable[LeaderboardRecord]
) -> Optional[DriverPositionChange]:
    """購読と現在のリーダーボードを比較する

    Returns:
        変化があれば DriverPositionChange。上位に居ない、または変化なしなら None
    """
    record = find_driver_record(subscription, records)
    if record is None:
        logger.info("Driver %s not found in leaderboard of %s", subscription.driver, subscription.map_uid)
        return None

    change = DriverPositionChange(subscription, new_position=record.position, new_score=record.score)
    if change.improved or change.worsened:
        return change
    return None


async def check_driver_positions(
    leaderboards: LeaderboardService, subscriptions: Iterable[DriverSubscription]
) -> List[DriverPositionChange]:
    """マップごとにリーダーボードを 1 回取得して全購読を比較する

    取得に失敗したマップは記録して読み飛ばす。
    """
    by_map: Dict[str, List[DriverSubscription]] = {}
    for subscription in subscriptions:
        by_map.setdefault(subscription.map_uid, []).append(subscription)

    changes: List[DriverPositionChange] = []
    for map_uid, group in by_map.items():
        try:
            records = await leaderboards.get_leaderboard(map_uid)
        except TmException as exc:
            logger.warning("Leaderboard fetch failed for map %s: %s", map_uid, exc)
            continue
        if not records:
            logger.warning("No leaderboard data for map %s", map_uid)
            continue

        for subscription in group:
            change = compare_driver_position(subscription, records)
            if change is not None:
                changes.append(change)

    logger.info("Driver position check completed: %d changes", len(changes))
    return changes


def format_driver_change(change: DriverPositionChange) -> str:
    """通知メール本文用に 1 件の変化を整形する"""
    subscription = change.subscription
    headline = "improved" if change.improved else "was beaten"
    lines = [
        f"Map: {subscription.map_name or subscription.map_uid}",
        f"  Driver: {subscription.driver} {headline}",
        f"  Position: {subscription.position} → {change.new_position}",
    ]
    if subscription.score is not None and change.new_score is not None and subscription.score != change.new_score:
        lines.append(f"  {format_time_difference(subscription.score, change.new_score)}")
    return "\n".join(lines)
