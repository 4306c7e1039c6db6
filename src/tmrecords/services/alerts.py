"""
通知購読の読み込みと保存

YAML ファイルからマッパー購読とドライバー購読を読み込む。ドライバー購読は
最後に確認した順位とタイムを保持し、通知後に書き戻す。

    alerts:
      - username: some_mapper
        email: someone@example.com
    drivers:
      - email: driver@example.com
        map_uid: abcDEF123
        map_name: Winter 07
        account_id: 0a1b2c3d-...
        username: some_driver
        position: 3
        score: 45123
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml

from tmrecords.errors import ErrorCode, TmError, TmException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertSubscription:
    """通知購読

    Attributes:
        username: 監視対象のマッパー名
        email: 通知先メールアドレス
    """
    username: str
    email: str


@dataclass(frozen=True)
class DriverSubscription:
    """ドライバー通知の購読

    Attributes:
        email: 通知先メールアドレス
        map_uid: 監視対象のマップ UID
        position: 最後に確認した順位
        account_id: ドライバーのアカウント ID
        username: ドライバーのログイン名
        map_name: 通知文に使うマップ名
        score: 最後に確認したタイム（ミリ秒）
    """
    email: str
    map_uid: str
    position: int
    account_id: Optional[str] = None
    username: Optional[str] = None
    map_name: Optional[str] = None
    score: Optional[int] = None

    @property
    def driver(self) -> str:
        return self.username or self.account_id or ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "email": self.email,
            "map_uid": self.map_uid,
            "map_name": self.map_name,
            "account_id": self.account_id,
            "username": self.username,
            "position": self.position,
            "score": self.score,
        }
        return {key: value for key, value in data.items() if value is not None}


class AlertRepository(Protocol):
    """通知購読の取得元"""

    def list_alerts(self) -> List[AlertSubscription]: ...

    def list_drivers(self) -> List[DriverSubscription]: ...

    def save_drivers(self, drivers: List[DriverSubscription]) -> None: ...


def _parse_driver(index: int, entry: Any) -> Optional[DriverSubscription]:
    if not isinstance(entry, dict):
        logger.warning("Skipping invalid driver entry #%d", index)
        return None

    email = entry.get("email")
    map_uid = entry.get("map_uid")
    account_id = entry.get("account_id")
    username = entry.get("username")
    if not email or not map_uid or not (account_id or username):
        logger.warning("Skipping driver entry #%d without email, map_uid or driver", index)
        return None

    try:
        position = int(entry.get("position"))
        score = entry.get("score")
        score = int(score) if score is not None else None
    except (TypeError, ValueError):
        logger.warning("Skipping driver entry #%d with invalid position or score", index)
        return None

    return DriverSubscription(
        email=str(email),
        map_uid=str(map_uid),
        position=position,
        account_id=str(account_id) if account_id else None,
        username=str(username) if username else None,
        map_name=str(entry["map_name"]) if entry.get("map_name") else None,
        score=score,
    )


class YamlAlertRepository:
    """YAML ファイルを取得元とする通知購読リポジトリ"""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.warning("Alerts file not found: %s", self.path)
            return {}

        try:
            with self.path.open("r", encoding="utf-8") as file:
                data = yaml.safe_load(file) or {}
        except yaml.YAMLError as exc:
            raise TmException(
                TmError(
                    code=ErrorCode.CONFIG_INVALID_VALUE.value,
                    message=f"通知購読ファイルの解析に失敗しました: {exc}",
                    details={"path": str(self.path)},
                    recoverable=False,
                )
            ) from exc

        return data if isinstance(data, dict) else {}

    def list_alerts(self) -> List[AlertSubscription]:
        """購読の一覧を返す

        ファイルが存在しない場合は空リスト。不正なエントリは読み飛ばす。

        Raises:
            TmException: YAML として解析できない場合
        """
        entries = self._load().get("alerts")
        if not isinstance(entries, list):
            logger.warning("Alerts file has no 'alerts' list: %s", self.path)
            return []

        subscriptions: List[AlertSubscription] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                logger.warning("Skipping invalid alert entry #%d", index)
                continue
            username = entry.get("username")
            email = entry.get("email")
            if not username or not email:
                logger.warning("Skipping alert entry #%d without username or email", index)
                continue
            subscriptions.append(AlertSubscription(username=str(username), email=str(email)))

        return subscriptions

    def list_drivers(self) -> List[DriverSubscription]:
        """ドライバー購読の一覧を返す

        Raises:
            TmException: YAML として解析できない場合
        """
        entries = self._load().get("drivers")
        if not isinstance(entries, list):
            return []

        drivers: List[DriverSubscription] = []
        for index, entry in enumerate(entries):
            driver = _parse_driver(index, entry)
            if driver is not None:
                drivers.append(driver)
        return drivers

    def save_drivers(self, drivers: List[DriverSubscription]) -> None:
        """ドライバー購読を書き戻す（他のキーはそのまま残す）"""
        data = self._load()
        data["drivers"] = [driver.to_dict() for driver in drivers]
        with self.path.open("w", encoding="utf-8") as file:
            yaml.safe_dump(data, file, allow_unicode=True, sort_keys=False)
        logger.info("Saved %d driver subscriptions to %s", len(drivers), self.path)
