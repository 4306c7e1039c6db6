"""認証付き HTTP クライアントの公開API。"""

from tmrecords.clients.base import AuthenticatedHttpClient
from tmrecords.clients.oauth import OAuthHttpClient
from tmrecords.clients.ticket import MAX_AUTH_RETRIES, TicketHttpClient

__all__ = [
    "AuthenticatedHttpClient",
    "MAX_AUTH_RETRIES",
    "OAuthHttpClient",
    "TicketHttpClient",
]
