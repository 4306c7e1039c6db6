"""認証トークンのプロセス内保存を提供する。"""

from __future__ import annotations

import logging

from tmrecords.auth.base import EMPTY_RECORD, Provider, TokenRecord

logger = logging.getLogger(__name__)


class TokenStore:
    """プロバイダ単位でトークンの組を保持する。

    組は不変の TokenRecord として丸ごと差し替えるため、読み手が
    異なる世代のアクセストークンとリフレッシュトークンを組み合わせて
    観測することはない。永続化は行わない。
    """

    def __init__(self) -> None:
        """空の TokenStore を初期化する。"""

        self._records: dict[Provider, TokenRecord] = {}

    def get_record(self, provider: Provider) -> TokenRecord:
        """トークンの組のスナップショットを返す。

        Args:
            provider: 対象プロバイダ。

        Returns:
            保存済みの組。未設定の場合は両方 None の組。
        """

        return self._records.get(provider, EMPTY_RECORD)

    def get_access_token(self, provider: Provider) -> str | None:
        """アクセストークンを取得する。未設定の場合は None。"""

        return self.get_record(provider).access_token

    def get_refresh_token(self, provider: Provider) -> str | None:
        """リフレッシュトークンを取得する。未設定の場合は None。"""

        return self.get_record(provider).refresh_token

    def set_tokens(self, provider: Provider, access: str | None, refresh: str | None) -> None:
        """トークンの組を置き換える。

        Args:
            provider: 対象プロバイダ。
            access: 新しいアクセストークン。
            refresh: 新しいリフレッシュトークン。リフレッシュの仕組みを
                持たないプロバイダでは None を明示する。
        """

        self._records[provider] = TokenRecord(access_token=access, refresh_token=refresh)
        logger.info("Tokens stored for %s (refresh token: %s)", provider.value, "yes" if refresh else "no")
