"""TicketHttpClient のユニットテスト

httpx.MockTransport 上の疑似サーバーで 401 回復の流れを検証する。
"""

import asyncio
import unittest

import httpx

from tmrecords.auth.base import Provider
from tmrecords.auth.storage import TokenStore
from tmrecords.auth.ticket import TicketAuthenticator, ticket_header
from tmrecords.clients.ticket import MAX_AUTH_RETRIES, TicketHttpClient
from tmrecords.core.concurrency import Throttle
from tmrecords.errors import AuthenticationException, ErrorCode, ThrottleException, TmException

BASE_URL = "https://live.test"
CORE_URL = "https://core-api.test"
LOGIN_URL = "https://core.test/login"
REFRESH_URL = "https://core.test/refresh"


def frozen_clock():
    return 100.0


class FakeNadeoServer:
    """ログイン・リフレッシュ・保護 API を模した疑似サーバー"""

    def __init__(self):
        self.generation = 0
        self.current_access = "access-0"
        self.login_calls = 0
        self.refresh_calls = 0
        self.refresh_status = 200
        self.omit_refresh_token = False
        self.login_status = 200
        self.api_headers = []
        self.api_gate = None
        self.waiting = 0

    def _issue(self, with_refresh_token=True):
        self.generation += 1
        self.current_access = f"access-{self.generation}"
        payload = {"accessToken": self.current_access}
        if with_refresh_token:
            payload["refreshToken"] = f"refresh-{self.generation}"
        return httpx.Response(200, json=payload)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/login":
            self.login_calls += 1
            if self.login_status != 200:
                return httpx.Response(self.login_status)
            return self._issue()
        if path == "/refresh":
            self.refresh_calls += 1
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status)
            return self._issue(with_refresh_token=not self.omit_refresh_token)

        authorization = request.headers.get("Authorization")
        self.api_headers.append(authorization)
        if self.api_gate is not None:
            self.waiting += 1
            await self.api_gate.wait()
        if path == "/broken":
            return httpx.Response(500, json={"error": "boom"})
        if path == "/forbidden":
            return httpx.Response(401)
        if authorization == ticket_header(self.current_access):
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(401)


class TestTicketHttpClient(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.server = FakeNadeoServer()
        self.transport = httpx.MockTransport(self.server.handler)
        self.auth_http = httpx.AsyncClient(transport=self.transport)
        self.store = TokenStore()
        self.authenticator = self.make_authenticator()
        self.clients = []

    async def asyncTearDown(self):
        for client in self.clients:
            await client.aclose()
        await self.auth_http.aclose()

    def make_authenticator(self, **throttles) -> TicketAuthenticator:
        return TicketAuthenticator(
            self.store, LOGIN_URL, REFRESH_URL, "login:password", http_client=self.auth_http, **throttles
        )

    def make_client(self, base_url=BASE_URL) -> TicketHttpClient:
        client = TicketHttpClient(self.authenticator, base_url, transport=self.transport)
        self.clients.append(client)
        return client

    async def test_attaches_ticket_header(self):
        self.store.set_tokens(Provider.TICKET, "access-0", "refresh-0")
        client = self.make_client()

        response = await client.get("/data")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.server.api_headers, ["nadeo_v1 t=access-0"])
        self.assertEqual(self.server.refresh_calls, 0)

    async def test_sends_without_header_when_no_token(self):
        """トークン未取得なら Authorization を付けずに送り 401 から回復する"""
        client = self.make_client()

        response = await client.get("/data")

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(self.server.api_headers[0])
        # リフレッシュトークンが無いためフルログインにフォールバック
        self.assertEqual(self.server.login_calls, 1)

    async def test_401_refreshes_and_replays(self):
        self.store.set_tokens(Provider.TICKET, "expired", "refresh-0")
        client = self.make_client()

        response = await client.get("/data")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.server.refresh_calls, 1)
        self.assertEqual(self.server.login_calls, 0)
        self.assertEqual(self.server.api_headers, ["nadeo_v1 t=expired", "nadeo_v1 t=access-1"])

    async def test_refresh_failure_falls_back_to_login(self):
        self.store.set_tokens(Provider.TICKET, "expired", "refresh-expired")
        self.server.refresh_status = 401
        client = self.make_client()

        response = await client.get("/data")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.server.refresh_calls, 1)
        self.assertEqual(self.server.login_calls, 1)
        self.assertEqual(self.store.get_refresh_token(Provider.TICKET), "refresh-1")

    async def test_non_401_error_is_raised_without_reauthentication(self):
        self.store.set_tokens(Provider.TICKET, "access-0", "refresh-0")
        client = self.make_client()

        with self.assertRaises(httpx.HTTPStatusError) as ctx:
            await client.get("/broken")

        self.assertEqual(ctx.exception.response.status_code, 500)
        self.assertEqual(self.server.refresh_calls, 0)
        self.assertEqual(self.server.login_calls, 0)

    async def test_retries_are_bounded(self):
        """401 が続いても再送は上限回数で打ち切る"""
        self.store.set_tokens(Provider.TICKET, "access-0", "refresh-0")
        self.authenticator = self.make_authenticator(refresh_throttle=Throttle(0), login_throttle=Throttle(0))
        client = self.make_client()

        with self.assertRaises(httpx.HTTPStatusError) as ctx:
            await client.get("/forbidden")

        self.assertEqual(ctx.exception.response.status_code, 401)
        self.assertEqual(MAX_AUTH_RETRIES, 2)
        self.assertEqual(len(self.server.api_headers), MAX_AUTH_RETRIES + 1)
        self.assertEqual(self.server.refresh_calls, MAX_AUTH_RETRIES)

    async def test_refresh_throttle_rejects_second_attempt(self):
        self.store.set_tokens(Provider.TICKET, "access-0", "refresh-0")
        self.authenticator = self.make_authenticator(refresh_throttle=Throttle(1.0, clock=frozen_clock))
        client = self.make_client()

        with self.assertRaises(ThrottleException) as ctx:
            await client.get("/forbidden")

        self.assertEqual(ctx.exception.error.code, ErrorCode.THROTTLE_REFRESH.value)
        self.assertEqual(self.server.refresh_calls, 1)

    async def test_login_throttle_is_independent(self):
        """リフレッシュが許可されてもログインは独自の間隔で拒否される"""
        self.store.set_tokens(Provider.TICKET, "access-0", "refresh-0")
        self.server.refresh_status = 401
        self.authenticator = self.make_authenticator(
            refresh_throttle=Throttle(0),
            login_throttle=Throttle(1.0, clock=frozen_clock),
        )
        client = self.make_client()

        with self.assertRaises(ThrottleException) as ctx:
            await client.get("/forbidden")

        self.assertEqual(ctx.exception.error.code, ErrorCode.THROTTLE_LOGIN.value)
        self.assertEqual(self.server.refresh_calls, 2)
        self.assertEqual(self.server.login_calls, 1)

    async def test_login_failure_after_refresh_raises(self):
        self.store.set_tokens(Provider.TICKET, "expired", "refresh-expired")
        self.server.refresh_status = 401
        self.server.login_status = 500
        client = self.make_client()

        with self.assertRaises(AuthenticationException) as ctx:
            await client.get("/data")

        self.assertEqual(ctx.exception.error.code, ErrorCode.AUTH_LOGIN_FAILED.value)
        self.assertIsInstance(ctx.exception.__cause__, httpx.HTTPStatusError)

    async def test_concurrent_401s_share_one_refresh(self):
        self.store.set_tokens(Provider.TICKET, "expired", "refresh-0")
        self.server.api_gate = asyncio.Event()
        client = self.make_client()

        tasks = [asyncio.create_task(client.get("/data")) for _ in range(5)]
        while self.server.waiting < 5:
            await asyncio.sleep(0)
        self.server.api_gate.set()
        responses = await asyncio.gather(*tasks)

        self.assertEqual([r.status_code for r in responses], [200] * 5)
        self.assertEqual(self.server.refresh_calls, 1)
        self.assertEqual(self.server.login_calls, 0)

    async def test_concurrent_failure_is_shared(self):
        """再認証の失敗は合流した全リクエストに伝わり、ログインは 1 回だけ"""
        self.store.set_tokens(Provider.TICKET, "expired", "refresh-expired")
        self.server.refresh_status = 401
        self.server.login_status = 500
        self.server.api_gate = asyncio.Event()
        client = self.make_client()

        tasks = [asyncio.create_task(client.get("/data")) for _ in range(3)]
        while self.server.waiting < 3:
            await asyncio.sleep(0)
        self.server.api_gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            self.assertIsInstance(result, TmException)
        self.assertEqual(self.server.login_calls, 1)

    async def test_replaced_token_replays_without_reauthentication(self):
        """送信後にトークンが差し替わっていれば再認証しない"""
        self.store.set_tokens(Provider.TICKET, "access-0", "refresh-0")
        client = self.make_client()

        await client._recover("some-older-token")

        self.assertEqual(self.server.refresh_calls, 0)
        self.assertEqual(self.server.login_calls, 0)

    async def test_refresh_without_new_refresh_token_keeps_old_one(self):
        """リフレッシュ応答に refreshToken が無ければ既存のものを保持して再送する"""
        self.store.set_tokens(Provider.TICKET, "expired", "refresh-0")
        self.server.omit_refresh_token = True
        client = self.make_client()

        response = await client.get("/data")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.server.refresh_calls, 1)
        self.assertEqual(self.store.get_access_token(Provider.TICKET), "access-1")
        self.assertEqual(self.store.get_refresh_token(Provider.TICKET), "refresh-0")

    async def test_refresh_throttle_is_shared_across_clients(self):
        """ベース URL の異なるクライアントも同じリフレッシュ間隔に従う"""
        self.store.set_tokens(Provider.TICKET, "access-0", "refresh-0")
        self.authenticator = self.make_authenticator(refresh_throttle=Throttle(1.0, clock=frozen_clock))
        live = self.make_client(BASE_URL)
        core = self.make_client(CORE_URL)

        with self.assertRaises(ThrottleException):
            await live.get("/forbidden")
        with self.assertRaises(ThrottleException) as ctx:
            await core.get("/forbidden")

        self.assertEqual(ctx.exception.error.code, ErrorCode.THROTTLE_REFRESH.value)
        # 2 つ目のクライアントは最小間隔内のためリフレッシュを送らない
        self.assertEqual(self.server.refresh_calls, 1)

    async def test_concurrent_401s_across_clients_share_one_refresh(self):
        self.store.set_tokens(Provider.TICKET, "expired", "refresh-0")
        self.authenticator = self.make_authenticator(refresh_throttle=Throttle(0), login_throttle=Throttle(0))
        self.server.api_gate = asyncio.Event()
        live = self.make_client(BASE_URL)
        core = self.make_client(CORE_URL)

        tasks = [asyncio.create_task(client.get("/data")) for client in (live, core, live, core)]
        while self.server.waiting < 4:
            await asyncio.sleep(0)
        self.server.api_gate.set()
        responses = await asyncio.gather(*tasks)

        self.assertEqual([r.status_code for r in responses], [200] * 4)
        self.assertEqual(self.server.refresh_calls, 1)
        self.assertEqual(self.authenticator.reauth.get_metrics().total_started, 1)


if __name__ == "__main__":
    unittest.main()
