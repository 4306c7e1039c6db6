"""Nadeo チケット方式の認証プロバイダ。

Basic 認証で保護されたエンドポイントにログインし、アクセストークンと
リフレッシュトークンの組を取得する。失敗は例外として送出せず
AuthResult として返す。
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from tmrecords.auth.base import Authenticator, AuthResult, Provider
from tmrecords.auth.storage import TokenStore
from tmrecords.core.concurrency import Throttle
from tmrecords.errors import AuthenticationException, ErrorCode, create_auth_error

logger = logging.getLogger(__name__)

TICKET_SCHEME = "nadeo_v1"
DEFAULT_AUDIENCE = "NadeoLiveServices"
DEFAULT_TIMEOUT = 30.0
REFRESH_INTERVAL_SECONDS = 1.0
LOGIN_INTERVAL_SECONDS = 1.0


def ticket_header(token: str) -> str:
    """チケット方式の Authorization ヘッダ値を組み立てる。"""

    return f"{TICKET_SCHEME} t={token}"


def encode_basic_credentials(credentials: str) -> str:
    """Basic 認証の資格情報を正規化する。

    ``login:password`` 形式なら base64 エンコードし、それ以外は
    エンコード済みの値としてそのまま使う。
    """

    if ":" in credentials:
        return base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    return credentials


class TicketAuthenticator(Authenticator):
    """チケット方式のログインとリフレッシュを行う。"""

    provider = Provider.TICKET

    def __init__(
        self,
        token_store: TokenStore,
        login_url: str,
        refresh_url: str,
        credentials: str,
        *,
        audience: str = DEFAULT_AUDIENCE,
        user_agent: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        refresh_throttle: Throttle | None = None,
        login_throttle: Throttle | None = None,
    ) -> None:
        """TicketAuthenticatorを初期化する。

        Args:
            token_store: トークン保存先。
            login_url: ログインエンドポイント。
            refresh_url: リフレッシュエンドポイント。
            credentials: Basic 認証の資格情報。空でも構築は成功し、ログイン失敗として扱う。
            audience: ログイン時に要求する audience。
            user_agent: クライアント識別ヘッダ。
            http_client: 共有する HTTP クライアント。None の場合は呼び出しごとに生成する。
            timeout: HTTP タイムアウト秒数。
            refresh_throttle: リフレッシュの最小間隔ゲート。このプロバイダの全クライアントで共有する。
            login_throttle: フルログインの最小間隔ゲート（リフレッシュとは独立）。
        """

        super().__init__(token_store)
        self._login_url = login_url
        self._refresh_url = refresh_url
        self._credentials = credentials
        self._audience = audience
        self._user_agent = user_agent
        self._http_client = http_client
        self._timeout = timeout
        self.refresh_throttle = refresh_throttle or Throttle(REFRESH_INTERVAL_SECONDS)
        self.login_throttle = login_throttle or Throttle(LOGIN_INTERVAL_SECONDS)

    async def login(self) -> AuthResult:
        """フルログインを実行する。

        Returns:
            AuthResult: 成功時のみトークンの組が保存される。
        """

        if not self._credentials:
            logger.error("Ticket login skipped: Basic credentials are not configured")
            return AuthResult.hard_failure(
                AuthenticationException(
                    create_auth_error(
                        ErrorCode.AUTH_LOGIN_FAILED,
                        "チケット認証の資格情報が設定されていません。",
                        details={"provider": self.provider.value},
                        recoverable=False,
                    )
                )
            )

        headers = {
            "Authorization": f"Basic {encode_basic_credentials(self._credentials)}",
            "Content-Type": "application/json",
        }
        if self._user_agent:
            headers["User-Agent"] = self._user_agent

        logger.info("Sending ticket login request to %s (audience=%s)", self._login_url, self._audience)
        try:
            payload = await self._post_json(self._login_url, {"audience": self._audience}, headers)
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Ticket login failed with status %s: %s",
                exc.response.status_code,
                exc.response.text,
            )
            return AuthResult.hard_failure(exc)
        except httpx.RequestError as exc:
            logger.error("Ticket login request made, but no response received: %r", exc)
            return AuthResult.hard_failure(exc)
        except Exception as exc:
            logger.exception("Unexpected error during ticket login")
            return AuthResult.hard_failure(exc)

        access_token = payload.get("accessToken")
        refresh_token = payload.get("refreshToken")
        if not access_token or not refresh_token:
            logger.warning("Ticket login succeeded but tokens are missing in response")
            return AuthResult.soft_failure("accessToken または refreshToken が応答に含まれていません。")

        self._token_store.set_tokens(self.provider, access_token, refresh_token)
        logger.info("Ticket login successful")
        return AuthResult.success()

    async def refresh(self) -> AuthResult:
        """保存済みのリフレッシュトークンでアクセストークンを更新する。

        応答に新しいリフレッシュトークンが無い場合は既存のものを保持する。
        リフレッシュトークンが未取得の場合は通信せずに SOFT_FAILURE を返す。
        """

        refresh_token = self._token_store.get_refresh_token(self.provider)
        if not refresh_token:
            logger.info("No ticket refresh token available")
            return AuthResult.soft_failure("リフレッシュトークンがありません。")

        headers = {
            "Authorization": ticket_header(refresh_token),
            "Content-Type": "application/json",
        }
        if self._user_agent:
            headers["User-Agent"] = self._user_agent

        logger.info("Attempting ticket token refresh")
        try:
            payload = await self._post_json(self._refresh_url, {}, headers)
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Ticket refresh failed with status %s: %s",
                exc.response.status_code,
                exc.response.text,
            )
            return AuthResult.hard_failure(exc)
        except httpx.RequestError as exc:
            logger.error("Ticket refresh request made, but no response received: %r", exc)
            return AuthResult.hard_failure(exc)
        except Exception as exc:
            logger.exception("Unexpected error during ticket refresh")
            return AuthResult.hard_failure(exc)

        access_token = payload.get("accessToken")
        if not access_token:
            logger.warning("Ticket refresh succeeded but accessToken is missing in response")
            return AuthResult.soft_failure("accessToken が応答に含まれていません。")

        new_refresh_token = payload.get("refreshToken") or refresh_token
        self._token_store.set_tokens(self.provider, access_token, new_refresh_token)
        logger.info("Ticket token refresh successful")
        return AuthResult.success()

    async def _post_json(self, url: str, body: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        if self._http_client is not None:
            response = await self._http_client.post(url, json=body, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=body, headers=headers)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            return {}
        return payload
