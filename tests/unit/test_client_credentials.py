"""ClientCredentialsAuthenticator のユニットテスト"""

import unittest
from urllib.parse import parse_qs

import httpx

from tmrecords.auth.base import AuthStatus, Provider
from tmrecords.auth.client_credentials import ClientCredentialsAuthenticator, bearer_header
from tmrecords.auth.storage import TokenStore
from tmrecords.errors import ConfigurationException, ErrorCode

TOKEN_URL = "https://oauth.test/api/access_token"


class TestConstruction(unittest.TestCase):
    def test_missing_client_id_raises(self):
        with self.assertRaises(ConfigurationException) as ctx:
            ClientCredentialsAuthenticator(TokenStore(), None, "secret")
        self.assertEqual(ctx.exception.error.code, ErrorCode.CONFIG_MISSING_CREDENTIALS.value)

    def test_missing_client_secret_raises(self):
        with self.assertRaises(ConfigurationException):
            ClientCredentialsAuthenticator(TokenStore(), "client", "")

    def test_bearer_header(self):
        self.assertEqual(bearer_header("abc"), "Bearer abc")


class TestClientCredentialsLogin(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.requests = []
        self.responder = lambda request: httpx.Response(
            200, json={"access_token": "oauth-1", "token_type": "bearer", "expires_in": 3600}
        )

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.responder(request)

        self.http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.store = TokenStore()
        self.auth = ClientCredentialsAuthenticator(
            self.store, "client", "secret", token_url=TOKEN_URL, http_client=self.http
        )

    async def asyncTearDown(self):
        await self.http.aclose()

    async def test_login_posts_form_and_stores_access_token_only(self):
        result = await self.auth.login()

        self.assertTrue(result.ok)
        self.assertEqual(self.store.get_access_token(Provider.OAUTH2), "oauth-1")
        self.assertIsNone(self.store.get_refresh_token(Provider.OAUTH2))

        request = self.requests[0]
        self.assertEqual(request.headers["Content-Type"], "application/x-www-form-urlencoded")
        form = parse_qs(request.content.decode())
        self.assertEqual(form["grant_type"], ["client_credentials"])
        self.assertEqual(form["client_id"], ["client"])
        self.assertEqual(form["client_secret"], ["secret"])

    async def test_login_http_error_propagates(self):
        """チケット方式と異なり HTTP エラーは送出される"""
        self.responder = lambda request: httpx.Response(401, json={"error": "invalid_client"})

        with self.assertRaises(httpx.HTTPStatusError):
            await self.auth.login()
        self.assertIsNone(self.store.get_access_token(Provider.OAUTH2))

    async def test_login_network_error_propagates(self):
        def responder(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        self.responder = responder

        with self.assertRaises(httpx.ConnectTimeout):
            await self.auth.login()

    async def test_login_without_access_token_is_soft_failure(self):
        self.store.set_tokens(Provider.OAUTH2, "existing", None)
        self.responder = lambda request: httpx.Response(200, json={"expires_in": 3600})

        result = await self.auth.login()

        self.assertEqual(result.status, AuthStatus.SOFT_FAILURE)
        self.assertEqual(self.store.get_access_token(Provider.OAUTH2), "existing")

    async def test_does_not_touch_ticket_slot(self):
        self.store.set_tokens(Provider.TICKET, "ticket-access", "ticket-refresh")

        await self.auth.login()

        self.assertEqual(self.store.get_access_token(Provider.TICKET), "ticket-access")
        self.assertEqual(self.store.get_refresh_token(Provider.TICKET), "ticket-refresh")


if __name__ == "__main__":
    unittest.main()
