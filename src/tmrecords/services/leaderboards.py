"""
マップ検索とリーダーボード取得

マッパー名からマップ一覧を取得し、各マップのリーダーボードを
チケット方式のクライアント経由で逐次取得する。
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from tmrecords.clients.ticket import TicketHttpClient
from tmrecords.core.concurrency import Pacer, Sleeper
from tmrecords.errors import ErrorCode, TmException, create_api_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAP_SEARCH_URL = "https://trackmania.exchange/api/maps"
LEADERBOARD_PATH = "/api/token/leaderboard/group/Personal_Best/map/{map_uid}/top"
LEADERBOARD_LENGTH = 100

# 集計期間ごとの秒数
PERIOD_SECONDS: Dict[str, int] = {
    "1d": 24 * 60 * 60,
    "1w": 7 * 24 * 60 * 60,
    "1m": 30 * 24 * 60 * 60,
}


@dataclass(frozen=True)
class MapInfo:
    """マップ検索結果の 1 件"""

    map_id: int
    map_uid: str
    name: str


@dataclass(frozen=True)
class LeaderboardRecord:
    """リーダーボードの 1 エントリ

    Attributes:
        account_id: プレイヤーのアカウント ID
        zone_name: ゾーン名
        position: 順位
        score: タイム（ミリ秒）。上流が欠損または負値を返した場合は None
        timestamp: 記録日時（UNIX 秒）
        login: プレイヤーのログイン名（応答に含まれる場合）
    """

    account_id: str
    zone_name: str
    position: int
    score: Optional[int]
    timestamp: int
    login: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LeaderboardRecord":
        score = payload.get("score")
        if score is not None:
            score = int(score)
        return cls(
            account_id=str(payload.get("accountId") or ""),
            zone_name=str(payload.get("zoneName") or ""),
            position=int(payload.get("position") or 0),
            score=score if score is not None and score >= 0 else None,
            timestamp=int(payload.get("timestamp") or 0),
            login=payload.get("login"),
        )


@dataclass
class MapLeaderboard:
    """期間内に記録があったマップとそのエントリ"""

    map_id: int
    map_name: str
    leaderboard: List[LeaderboardRecord] = field(default_factory=list)


def parse_leaderboard(data: Dict[str, Any]) -> List[LeaderboardRecord]:
    """リーダーボード API の応答を全エントリのリストに変換する"""
    return [
        LeaderboardRecord.from_payload(entry)
        for group in data.get("tops") or []
        for entry in group.get("top") or []
    ]


def filter_records_by_period(
    data: Dict[str, Any],
    period: str = "1d",
    now: Optional[float] = None,
) -> List[LeaderboardRecord]:
    """期間内に記録されたエントリだけを抽出する

    Args:
        data: リーダーボード API の応答
        period: ``1d`` / ``1w`` / ``1m``。それ以外は空リストを返す
        now: 基準時刻（UNIX 秒）。省略時は現在時刻

    Returns:
        List[LeaderboardRecord]: 期間内のエントリ
    """
    threshold = PERIOD_SECONDS.get(period)
    if threshold is None:
        return []

    current = time.time() if now is None else now
    return [record for record in parse_leaderboard(data) if current - record.timestamp <= threshold]


async def fetch_with_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int,
    delay: float,
    sleep: Sleeper = asyncio.sleep,
) -> T:
    """失敗時に固定間隔で再試行する

    Raises:
        Exception: 最終試行で発生した例外をそのまま送出
    """
    if retries < 1:
        raise ValueError("retries は 1 以上である必要があります")

    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            logger.error("Attempt %d/%d failed: %s", attempt, retries, exc)
            if attempt >= retries:
                raise
            logger.info("Waiting %.0f seconds before retrying...", delay)
            await sleep(delay)
            attempt += 1


class LeaderboardService:
    """マッパーのマップとリーダーボードを取得するサービス"""

    def __init__(
        self,
        client: TicketHttpClient,
        *,
        map_search_url: str = DEFAULT_MAP_SEARCH_URL,
        public_client: Optional[httpx.AsyncClient] = None,
        pacer: Optional[Pacer] = None,
        retry_limit: int = 5,
        retry_delay: float = 15 * 60.0,
        sleep: Sleeper = asyncio.sleep,
        timeout: float = 30.0,
    ) -> None:
        """LeaderboardServiceを初期化

        Args:
            client: リーダーボード API 用のチケット方式クライアント
            map_search_url: 公開マップ検索 API の URL
            public_client: 認証不要な API 用のクライアント
            pacer: リーダーボード呼び出しの間隔制御（既定 0.5 秒）
            retry_limit: 各呼び出しの最大試行回数
            retry_delay: 再試行までの待機秒数
            sleep: 待機関数（テスト用に差し替え可能）
            timeout: 公開 API のタイムアウト秒数
        """
        self._client = client
        self._map_search_url = map_search_url
        self._owns_public_client = public_client is None
        self._public_client = public_client or httpx.AsyncClient(timeout=timeout)
        self._pacer = pacer or Pacer(0.5)
        self._retry_limit = retry_limit
        self._retry_delay = retry_delay
        self._sleep = sleep

    async def get_records(self, map_uid: str) -> Dict[str, Any]:
        """マップのリーダーボード（世界上位）を取得する

        Raises:
            TmException: API 呼び出しに失敗した場合
        """
        url = LEADERBOARD_PATH.format(map_uid=map_uid)
        params = {"onlyWorld": "true", "length": LEADERBOARD_LENGTH}
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            logger.error("Error fetching records for map %s: %s", map_uid, exc)
            raise TmException(
                create_api_error(
                    code=ErrorCode.API_ERROR,
                    message="リーダーボードの取得に失敗しました。",
                    details={"map_uid": map_uid, "error": str(exc)},
                )
            ) from exc
        return response.json()

    async def get_leaderboard(self, map_uid: str) -> List[LeaderboardRecord]:
        """間隔を空けてリーダーボードを取得し、全エントリを返す

        Raises:
            TmException: API 呼び出しに失敗した場合
        """
        await self._pacer.wait()
        return parse_leaderboard(await self.get_records(map_uid))

    async def search_maps(self, author: str) -> List[MapInfo]:
        """作者名でマップを検索する（全ページを取得）"""
        results: List[MapInfo] = []
        last_map_id: Optional[int] = None
        has_more = True

        while has_more:
            params: Dict[str, Any] = {"author": author, "fields": "Name,MapId,MapUid,Authors"}
            if last_map_id is not None:
                params["after"] = last_map_id

            response = await self._public_client.get(self._map_search_url, params=params)
            response.raise_for_status()
            data = response.json()

            page = data.get("Results") or []
            for item in page:
                results.append(
                    MapInfo(
                        map_id=int(item["MapId"]),
                        map_uid=str(item["MapUid"]),
                        name=str(item.get("Name", "")),
                    )
                )
            if page:
                last_map_id = results[-1].map_id
            has_more = bool(data.get("More")) and bool(page)

        logger.info("Found %d maps for author %s", len(results), author)
        return results

    async def fetch_maps_and_leaderboards(
        self, author: str, period: Optional[str] = None
    ) -> List[MapLeaderboard]:
        """作者の全マップについて期間内の記録を収集する

        下流 API の毎秒リクエスト上限を守るため、並列化せず逐次取得する。

        Args:
            author: マッパー名
            period: ``1d`` / ``1w`` / ``1m``。None の場合は期間で絞り込まない
        """
        maps = await fetch_with_retry(
            lambda: self.search_maps(author),
            self._retry_limit,
            self._retry_delay,
            self._sleep,
        )

        collected: List[MapLeaderboard] = []
        for map_info in maps:
            await self._pacer.wait()
            data = await fetch_with_retry(
                lambda uid=map_info.map_uid: self.get_records(uid),
                self._retry_limit,
                self._retry_delay,
                self._sleep,
            )
            filtered = filter_records_by_period(data, period) if period else parse_leaderboard(data)
            if filtered:
                collected.append(
                    MapLeaderboard(map_id=map_info.map_id, map_name=map_info.name, leaderboard=filtered)
                )

        return collected

    async def aclose(self) -> None:
        if self._owns_public_client:
            await self._public_client.aclose()
