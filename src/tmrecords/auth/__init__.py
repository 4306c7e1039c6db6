"""認証プロバイダの公開API。"""

from __future__ import annotations

from tmrecords.auth.base import Authenticator, AuthResult, AuthStatus, Provider, TokenRecord
from tmrecords.auth.client_credentials import ClientCredentialsAuthenticator, bearer_header
from tmrecords.auth.storage import TokenStore
from tmrecords.auth.ticket import TicketAuthenticator, ticket_header

__all__ = [
    "AuthResult",
    "AuthStatus",
    "Authenticator",
    "ClientCredentialsAuthenticator",
    "Provider",
    "TicketAuthenticator",
    "TokenRecord",
    "TokenStore",
    "bearer_header",
    "ticket_header",
]
