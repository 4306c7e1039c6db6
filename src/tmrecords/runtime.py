"""
実行時コンポーネントの組み立て

1 つの TokenStore を両プロバイダの認証プロバイダとクライアントで共有し、
サービス群と起動時ログインを提供する。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from tmrecords.auth.base import Provider
from tmrecords.auth.client_credentials import ClientCredentialsAuthenticator
from tmrecords.auth.storage import TokenStore
from tmrecords.auth.ticket import TicketAuthenticator
from tmrecords.clients.oauth import OAuthHttpClient
from tmrecords.clients.ticket import TicketHttpClient
from tmrecords.config.settings import TmSettings
from tmrecords.core.concurrency import Pacer, Throttle
from tmrecords.errors import AuthenticationException, ErrorCode, create_auth_error
from tmrecords.services.account_names import AccountNameService
from tmrecords.services.alerts import YamlAlertRepository
from tmrecords.services.leaderboards import LeaderboardService
from tmrecords.services.notifications import Mailer
from tmrecords.services.scheduler import AlertScheduler

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """アプリケーション全体で共有するコンポーネント"""

    settings: TmSettings
    token_store: TokenStore
    auth_http: httpx.AsyncClient
    ticket_auth: TicketAuthenticator
    ticket_client: TicketHttpClient
    leaderboards: LeaderboardService
    scheduler: AlertScheduler
    oauth_auth: Optional[ClientCredentialsAuthenticator] = None
    oauth_client: Optional[OAuthHttpClient] = None
    account_names: Optional[AccountNameService] = None

    @classmethod
    def from_settings(
        cls,
        settings: TmSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Runtime":
        """設定からコンポーネントを生成する

        OAuth2 の資格情報が無い場合、OAuth2 関連のコンポーネントは生成せず、
        通知メールではアカウント ID をそのまま表示する。

        Args:
            settings: 統合設定
            transport: すべての HTTP クライアントで使うトランスポート
        """
        token_store = TokenStore()
        auth_http = httpx.AsyncClient(timeout=settings.http_timeout, transport=transport)
        default_headers = {"User-Agent": settings.user_agent}

        ticket_auth = TicketAuthenticator(
            token_store,
            settings.auth_api_url,
            settings.refresh_url,
            settings.authorization,
            audience=settings.audience,
            user_agent=settings.user_agent,
            http_client=auth_http,
            timeout=settings.http_timeout,
            refresh_throttle=Throttle(settings.ticket_refresh_interval),
            login_throttle=Throttle(settings.ticket_login_interval),
        )
        ticket_client = TicketHttpClient(
            ticket_auth,
            settings.leaderboard_api,
            timeout=settings.http_timeout,
            headers=default_headers,
            transport=transport,
        )

        oauth_auth: Optional[ClientCredentialsAuthenticator] = None
        oauth_client: Optional[OAuthHttpClient] = None
        account_names: Optional[AccountNameService] = None
        if settings.has_oauth_credentials:
            oauth_auth = ClientCredentialsAuthenticator(
                token_store,
                settings.oauth_client_id,
                settings.oauth_client_secret,
                token_url=settings.oauth_token_url,
                http_client=auth_http,
                timeout=settings.http_timeout,
                refresh_throttle=Throttle(settings.oauth_refresh_interval),
            )
            oauth_client = OAuthHttpClient(
                oauth_auth,
                settings.account_api,
                timeout=settings.http_timeout,
                headers=default_headers,
                transport=transport,
            )
            account_names = AccountNameService(oauth_client)
        else:
            logger.warning("OAuth2 credentials are not configured; display names will not be resolved")

        leaderboards = LeaderboardService(
            ticket_client,
            map_search_url=settings.map_search_api,
            public_client=httpx.AsyncClient(
                timeout=settings.http_timeout,
                headers=default_headers,
                transport=transport,
            ),
            pacer=Pacer(settings.leaderboard_delay),
            retry_limit=settings.fetch_retry_limit,
            retry_delay=settings.fetch_retry_delay,
        )
        mailer = Mailer(
            settings.smtp_host,
            settings.smtp_port,
            settings.email_user,
            settings.email_pass,
            timeout=settings.http_timeout,
        )
        scheduler = AlertScheduler(
            leaderboards,
            YamlAlertRepository(settings.alerts_file),
            mailer,
            account_names,
            hour=settings.schedule_hour,
            timezone=settings.schedule_timezone,
        )

        return cls(
            settings=settings,
            token_store=token_store,
            auth_http=auth_http,
            ticket_auth=ticket_auth,
            ticket_client=ticket_client,
            leaderboards=leaderboards,
            scheduler=scheduler,
            oauth_auth=oauth_auth,
            oauth_client=oauth_client,
            account_names=account_names,
        )

    async def initial_login(self) -> None:
        """起動時のログインを行う

        チケット方式の認証プロバイダは失敗を送出しないため、ここで結果を
        確認し、トークンが得られなければ起動を中止する。OAuth2 の失敗は
        そのまま送出される。

        Raises:
            AuthenticationException: チケット方式のログインに失敗した場合
        """
        result = await self.ticket_auth.login()
        if not result.ok or self.token_store.get_access_token(Provider.TICKET) is None:
            raise AuthenticationException(
                create_auth_error(
                    ErrorCode.AUTH_LOGIN_FAILED,
                    "起動時のチケットログインに失敗しました。",
                    details={"status": result.status.value, "reason": result.reason},
                    recoverable=False,
                )
            ) from result.error

        if self.oauth_auth is not None:
            await self.oauth_auth.login()

    async def aclose(self) -> None:
        await self.ticket_client.aclose()
        if self.oauth_client is not None:
            await self.oauth_client.aclose()
        await self.leaderboards.aclose()
        await self.auth_http.aclose()
