"""アカウント ID から表示名への変換"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

import httpx

from tmrecords.clients.oauth import OAuthHttpClient
from tmrecords.errors import TmException

logger = logging.getLogger(__name__)

DISPLAY_NAMES_PATH = "/api/display-names"
# 1 リクエストあたりの上限（API ドキュメント準拠）
MAX_IDS_PER_REQUEST = 50


class AccountNameService:
    """OAuth2 方式の API で表示名を一括取得する"""

    def __init__(self, client: OAuthHttpClient, chunk_size: int = MAX_IDS_PER_REQUEST) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size は 1 以上である必要があります")
        self._client = client
        self._chunk_size = chunk_size

    async def translate(self, account_ids: Iterable[str]) -> Dict[str, str]:
        """アカウント ID を表示名に変換する

        取得に失敗したチャンクはログに記録して読み飛ばす。

        Returns:
            Dict[str, str]: アカウント ID から表示名への対応
        """
        unique_ids: List[str] = list(dict.fromkeys(i for i in account_ids if i))
        if not unique_ids:
            logger.warning("No account IDs provided for translation.")
            return {}

        results: Dict[str, str] = {}
        for start in range(0, len(unique_ids), self._chunk_size):
            chunk = unique_ids[start:start + self._chunk_size]
            params = [("accountId[]", account_id) for account_id in chunk]
            try:
                response = await self._client.get(DISPLAY_NAMES_PATH, params=params)
                payload = response.json()
            except (httpx.HTTPError, TmException, ValueError) as exc:
                logger.error("Failed to fetch display names: %s", exc)
                continue

            if isinstance(payload, dict):
                results.update({str(k): str(v) for k, v in payload.items()})

        return results
