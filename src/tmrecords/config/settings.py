"""Pydantic V2 ベースの統合設定モデル"""

import logging
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tmrecords import __version__

logger = logging.getLogger(__name__)

# マスク対象のフィールド
SECRET_FIELDS = ("authorization", "oauth_client_secret", "email_pass")


def mask_secret(value: Optional[str]) -> Optional[str]:
    """機微情報を先頭と末尾のみ残してマスクする"""
    if not value:
        return value
    return f"{value[:4]}...{value[-2:]}" if len(value) > 8 else "***"


class TmSettings(BaseSettings):
    """tmrecords の統合設定

    すべての値は ``TM_`` プレフィックス付きの環境変数、または ``.env`` から読み込む。
    """

    model_config = SettingsConfigDict(
        env_prefix="TM_",
        env_file=".env",
        extra="ignore",
    )

    # チケット認証（Nadeo）
    auth_api_url: str = Field(
        default="https://prod.trackmania.core.nadeo.online/v2/authentication/token/basic"
    )
    refresh_url: str = Field(
        default="https://prod.trackmania.core.nadeo.online/v2/authentication/token/refresh"
    )
    authorization: str = Field(default="", description="Basic 認証の資格情報")
    audience: str = Field(default="NadeoLiveServices")
    user_agent: str = Field(default=f"tmrecords/{__version__}")

    # OAuth2 client credentials
    oauth_token_url: str = Field(default="https://api.trackmania.com/api/access_token")
    oauth_client_id: Optional[str] = None
    oauth_client_secret: Optional[str] = None

    # 下流 API
    leaderboard_api: str = Field(default="https://live-services.trackmania.nadeo.live")
    account_api: str = Field(default="https://api.trackmania.com")
    map_search_api: str = Field(default="https://trackmania.exchange/api/maps")

    # HTTP / スロットリング設定
    http_timeout: float = Field(default=30.0, gt=0)
    ticket_refresh_interval: float = Field(default=1.0, ge=0)
    ticket_login_interval: float = Field(default=1.0, ge=0)
    oauth_refresh_interval: float = Field(default=10.0, ge=0)
    leaderboard_delay: float = Field(default=0.5, ge=0)
    fetch_retry_limit: int = Field(default=5, ge=1)
    fetch_retry_delay: float = Field(default=15 * 60.0, ge=0)

    # 通知設定
    alerts_file: Path = Path("alerts.yaml")
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = Field(default=465, ge=1, le=65535)
    email_user: str = ""
    email_pass: str = ""

    # スケジューラ設定
    schedule_hour: int = Field(default=4, ge=0, le=23)
    schedule_timezone: str = "Europe/Paris"
    scheduler_enabled: bool = True

    # サーバー設定
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)

    @field_validator("schedule_timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """IANA タイムゾーン名であることを検証"""
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"不明なタイムゾーンです: {value}") from exc
        return value

    @property
    def has_oauth_credentials(self) -> bool:
        return bool(self.oauth_client_id and self.oauth_client_secret)

    def dump_masked(self) -> dict:
        """機微情報をマスクした設定を返却する"""
        data = self.model_dump(mode="json")
        for key in SECRET_FIELDS:
            data[key] = mask_secret(data.get(key))
        return data
