"""
OAuth2 方式の認証付き HTTP クライアント

このプロバイダの再認証は client credentials の再ログインのみ。
401 応答時は 1 回だけ再認証して再送し、再送の 401 はそのまま送出する。
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from tmrecords.auth.base import Provider
from tmrecords.auth.client_credentials import ClientCredentialsAuthenticator, bearer_header
from tmrecords.clients.base import AuthenticatedHttpClient
from tmrecords.errors import (
    AuthenticationException,
    ErrorCode,
    ThrottleException,
    create_auth_error,
    create_throttle_error,
)

logger = logging.getLogger(__name__)


class OAuthHttpClient(AuthenticatedHttpClient):
    """client credentials で保護された API 向けクライアント"""

    provider = Provider.OAUTH2
    _authenticator: ClientCredentialsAuthenticator

    def _authorization(self, token: str) -> str:
        return bearer_header(token)

    async def _send(self, method: str, url: str, options: Dict[str, Any]) -> httpx.Response:
        response, used_token = await self._dispatch(method, url, options)
        if response.status_code != 401:
            return self._raise_for_status(response)

        logger.info("Received 401 for %s %s, trying to refresh OAuth2 token", method, url)
        await self._recover(used_token)

        logger.info("Retrying %s %s with refreshed token", method, url)
        response, _ = await self._dispatch(method, url, options)
        return self._raise_for_status(response)

    async def _reauthenticate(self) -> None:
        """client credentials フローを再実行する（フォールバックなし）"""
        if not self._authenticator.refresh_throttle.try_acquire():
            logger.warning("OAuth2 refresh called too recently, aborting retry.")
            raise ThrottleException(
                create_throttle_error(
                    ErrorCode.THROTTLE_REFRESH,
                    "OAuth2 refresh throttled.",
                    self.provider.value,
                )
            )

        result = await self._authenticator.login()
        if not result.ok:
            raise AuthenticationException(
                create_auth_error(
                    ErrorCode.AUTH_TOKENS_MISSING,
                    "OAuth2 の再認証でアクセストークンを取得できませんでした。",
                    details={"provider": self.provider.value, "reason": result.reason},
                )
            )
