"""OAuth2 client credentials 方式の認証プロバイダ。

リフレッシュトークンを持たないため、再認証は常にフルログインとなる。
チケット方式と異なり、失敗は呼び出し元へ送出する。
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from tmrecords.auth.base import Authenticator, AuthResult, Provider
from tmrecords.auth.storage import TokenStore
from tmrecords.core.concurrency import Throttle
from tmrecords.errors import ConfigurationException, create_config_error

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://api.trackmania.com/api/access_token"
DEFAULT_TIMEOUT = 30.0
REFRESH_INTERVAL_SECONDS = 10.0


def bearer_header(token: str) -> str:
    """Bearer 方式の Authorization ヘッダ値を組み立てる。"""

    return f"Bearer {token}"


class ClientCredentialsAuthenticator(Authenticator):
    """client_id / client_secret で短命なアクセストークンを取得する。"""

    provider = Provider.OAUTH2

    def __init__(
        self,
        token_store: TokenStore,
        client_id: str | None,
        client_secret: str | None,
        *,
        token_url: str = DEFAULT_TOKEN_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        refresh_throttle: Throttle | None = None,
    ) -> None:
        """ClientCredentialsAuthenticatorを初期化する。

        Args:
            token_store: トークン保存先。
            client_id: OAuth クライアント ID。
            client_secret: OAuth クライアントシークレット。
            token_url: トークンエンドポイント。
            http_client: 共有する HTTP クライアント。
            timeout: HTTP タイムアウト秒数。
            refresh_throttle: 再認証の最小間隔ゲート。このプロバイダの全クライアントで共有する。

        Raises:
            ConfigurationException: client_id または client_secret が未設定の場合。
        """

        if not client_id or not client_secret:
            raise ConfigurationException(
                create_config_error(
                    "OAuth クライアント ID またはシークレットが設定されていません。",
                    details={
                        "provider": self.provider.value,
                        "client_id": bool(client_id),
                        "client_secret": bool(client_secret),
                    },
                )
            )

        super().__init__(token_store)
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._http_client = http_client
        self._timeout = timeout
        self.refresh_throttle = refresh_throttle or Throttle(REFRESH_INTERVAL_SECONDS)

    async def login(self) -> AuthResult:
        """client credentials フローでアクセストークンを取得する。

        Returns:
            AuthResult: SUCCESS または SOFT_FAILURE。

        Raises:
            httpx.HTTPStatusError: エンドポイントがエラー応答を返した場合。
            httpx.RequestError: 応答を受信できなかった場合。
        """

        data = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        try:
            payload = await self._post_form(data)
        except httpx.HTTPStatusError as exc:
            logger.error(
                "OAuth login failed with status %s: %s",
                exc.response.status_code,
                exc.response.text,
            )
            raise
        except httpx.RequestError as exc:
            logger.error("OAuth request made, but no response received: %r", exc)
            raise
        except Exception:
            logger.exception("Unexpected error during OAuth login")
            raise

        access_token = payload.get("access_token")
        if not access_token:
            logger.warning("OAuth login succeeded but no token was returned")
            return AuthResult.soft_failure("access_token が応答に含まれていません。")

        self._token_store.set_tokens(self.provider, access_token, None)
        logger.info("OAuth2 token fetched (valid for %ss)", payload.get("expires_in"))
        return AuthResult.success()

    async def _post_form(self, data: dict[str, str]) -> dict[str, Any]:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self._http_client is not None:
            response = await self._http_client.post(
                self._token_url, data=data, headers=headers, timeout=self._timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._token_url, data=data, headers=headers)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            return {}
        return payload
