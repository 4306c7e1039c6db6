"""
チケット方式の認証付き HTTP クライアント

401 応答時はリフレッシュを試み、失敗すればフルログインへフォールバックしてから
元のリクエストを再送する。再送は 1 リクエストあたり最大 2 回まで。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from tmrecords.auth.base import Provider
from tmrecords.auth.ticket import TicketAuthenticator, ticket_header
from tmrecords.clients.base import DEFAULT_TIMEOUT, AuthenticatedHttpClient
from tmrecords.errors import (
    AuthenticationException,
    ErrorCode,
    ThrottleException,
    create_auth_error,
    create_throttle_error,
)

logger = logging.getLogger(__name__)

MAX_AUTH_RETRIES = 2


class TicketHttpClient(AuthenticatedHttpClient):
    """Nadeo チケット方式の API 向けクライアント

    リフレッシュとログインの最小間隔は認証プロバイダ側のゲートを使う。

    Attributes:
        max_retries: 401 を契機とした再送の上限回数
    """

    provider = Provider.TICKET
    _authenticator: TicketAuthenticator

    def __init__(
        self,
        authenticator: TicketAuthenticator,
        base_url: str = "",
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = MAX_AUTH_RETRIES,
    ) -> None:
        """TicketHttpClientを初期化

        Args:
            authenticator: ログインとリフレッシュを行う認証プロバイダ
            base_url: 相対パスの基準となる URL
            http_client: 共有する HTTP クライアント
            timeout: リクエストのタイムアウト秒数
            headers: 既定で付与するヘッダ
            transport: テストや接続設定用の httpx トランスポート
            max_retries: 401 を契機とした再送の上限回数
        """
        super().__init__(
            authenticator,
            base_url,
            http_client=http_client,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self.max_retries = max_retries

    def _authorization(self, token: str) -> str:
        return ticket_header(token)

    async def _send(self, method: str, url: str, options: Dict[str, Any]) -> httpx.Response:
        return await self._send_with_attempt(method, url, options, attempt=0)

    async def _send_with_attempt(
        self, method: str, url: str, options: Dict[str, Any], attempt: int
    ) -> httpx.Response:
        response, used_token = await self._dispatch(method, url, options)
        if response.status_code != 401:
            return self._raise_for_status(response)

        logger.warning("Received 401 for %s %s (attempt %d/%d)", method, url, attempt, self.max_retries)
        if attempt >= self.max_retries:
            logger.error("Too many retries for %s %s. Aborting request.", method, url)
            return self._raise_for_status(response)

        await self._recover(used_token)
        logger.info("Retrying %s %s with refreshed token", method, url)
        return await self._send_with_attempt(method, url, options, attempt + 1)

    async def _reauthenticate(self) -> None:
        """リフレッシュ、失敗時はフルログインでトークンを更新する"""
        if not self._authenticator.refresh_throttle.try_acquire():
            logger.warning("Refresh requested too recently. Aborting.")
            raise ThrottleException(
                create_throttle_error(
                    ErrorCode.THROTTLE_REFRESH,
                    "Refresh cooldown active.",
                    self.provider.value,
                )
            )

        result = await self._authenticator.refresh()
        if result.ok:
            return

        logger.warning("Refresh failed (%s). Attempting full login.", result.reason)
        if not self._authenticator.login_throttle.try_acquire():
            logger.error("Login attempted too soon. Aborting.")
            raise ThrottleException(
                create_throttle_error(
                    ErrorCode.THROTTLE_LOGIN,
                    "Login cooldown active.",
                    self.provider.value,
                )
            )

        login_result = await self._authenticator.login()
        if not login_result.ok:
            logger.error("Login failed after refresh attempt: %s", login_result.reason)
            raise AuthenticationException(
                create_auth_error(
                    ErrorCode.AUTH_LOGIN_FAILED,
                    "リフレッシュ後のフルログインに失敗しました。",
                    details={
                        "provider": self.provider.value,
                        "status": login_result.status.value,
                        "reason": login_result.reason,
                        "refresh_reason": result.reason,
                    },
                )
            ) from login_result.error
