"""
認証付き HTTP クライアントの共通部分

送信前のトークン付与、401 応答時の再認証の束ね、終端ステータスの送出を扱う。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from tmrecords.auth.base import Authenticator, Provider
from tmrecords.auth.storage import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class AuthenticatedHttpClient(ABC):
    """プロバイダのトークンを付与して送信する HTTP クライアント

    401 以外の応答はそのまま扱い、2xx は返却、それ以外は
    ``httpx.HTTPStatusError`` として送出する。再認証は単一実行に束ね、
    同時に 401 を受けたリクエストは 1 回の再認証結果を共有する。
    再認証の単一実行と最小間隔は認証プロバイダが保持するため、
    ベース URL の異なるクライアント同士でも共有される。
    """

    provider: Provider

    def __init__(
        self,
        authenticator: Authenticator,
        base_url: str = "",
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._authenticator = authenticator
        self._token_store = authenticator.token_store
        self._timeout = timeout
        # 外部から渡されたクライアントは閉じない
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json", **(headers or {})},
            transport=transport,
        )

    @property
    def token_store(self) -> TokenStore:
        return self._token_store

    @abstractmethod
    def _authorization(self, token: str) -> str:
        """アクセストークンから Authorization ヘッダ値を生成する"""

    @abstractmethod
    async def _reauthenticate(self) -> None:
        """プロバイダ固有の再認証を実行する（単一実行の中で呼ばれる）"""

    @abstractmethod
    async def _send(self, method: str, url: str, options: Dict[str, Any]) -> httpx.Response:
        """401 処理を含めて送信する"""

    async def request(self, method: str, url: str, **options: Any) -> httpx.Response:
        """認証付きでリクエストを送信する

        Args:
            method: HTTP メソッド
            url: ベース URL からの相対パス、または絶対 URL
            **options: ``httpx.AsyncClient.request`` に渡す引数

        Returns:
            httpx.Response: 2xx の応答

        Raises:
            httpx.HTTPStatusError: 終端的な非 2xx 応答（再試行上限後の 401 を含む）
            ThrottleException: 再認証が最小間隔内に要求された場合
            AuthenticationException: 再認証に失敗した場合
        """
        return await self._send(method.upper(), url, options)

    async def get(self, url: str, **options: Any) -> httpx.Response:
        return await self.request("GET", url, **options)

    async def post(self, url: str, **options: Any) -> httpx.Response:
        return await self.request("POST", url, **options)

    async def _dispatch(
        self, method: str, url: str, options: Dict[str, Any]
    ) -> Tuple[httpx.Response, Optional[str]]:
        """現在のアクセストークンを付与して 1 回送信する

        Returns:
            応答と、送信に使用したアクセストークン（未取得なら None）
        """
        token = self._token_store.get_access_token(self.provider)
        headers = dict(options.get("headers") or {})
        if token:
            headers["Authorization"] = self._authorization(token)
        request_options = {**options, "headers": headers}
        request_options.setdefault("timeout", self._timeout)

        response = await self._client.request(method, url, **request_options)
        return response, token

    async def _recover(self, used_token: Optional[str]) -> None:
        """401 を受けたリクエストのためにトークンを回復する

        送信時のトークンが既に差し替えられていれば、再認証せずに
        現在のトークンで再送できる。
        """
        current = self._token_store.get_access_token(self.provider)
        if current and current != used_token:
            logger.info("%s access token already replaced, replaying request", self.provider.value)
            return
        await self._authenticator.reauth.run(self._reauthenticate)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> httpx.Response:
        response.raise_for_status()
        return response

    async def aclose(self) -> None:
        """生成した HTTP クライアントをクリーンアップ"""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AuthenticatedHttpClient":
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.aclose()
