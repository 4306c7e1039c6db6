"""
Web API のレスポンスモデル
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tmrecords.services.leaderboards import LeaderboardRecord, MapLeaderboard


class HealthResponse(BaseModel):
    """ヘルスチェックレスポンスモデル"""
    status: str
    timestamp: str
    uptime: float
    version: str
    tokens: Dict[str, bool] = Field(default_factory=dict)


class RecordResponse(BaseModel):
    """リーダーボードの 1 エントリ（上流 API と同じキー名）"""
    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(alias="accountId")
    zone_name: str = Field(alias="zoneName")
    position: int
    score: Optional[int]
    timestamp: int

    @classmethod
    def from_record(cls, record: LeaderboardRecord) -> "RecordResponse":
        return cls(
            account_id=record.account_id,
            zone_name=record.zone_name,
            position=record.position,
            score=record.score,
            timestamp=record.timestamp,
        )


class ErrorResponse(BaseModel):
    """エラーレスポンスモデル"""
    error: str


class MapLeaderboardResponse(BaseModel):
    """マップごとの記録一覧"""
    model_config = ConfigDict(populate_by_name=True)

    map_id: int = Field(alias="mapId")
    map_name: str = Field(alias="mapName")
    leaderboard: List[RecordResponse] = Field(default_factory=list)

    @classmethod
    def from_map(cls, entry: MapLeaderboard) -> "MapLeaderboardResponse":
        return cls(
            map_id=entry.map_id,
            map_name=entry.map_name,
            leaderboard=[RecordResponse.from_record(record) for record in entry.leaderboard],
        )
