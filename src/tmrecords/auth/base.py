"""認証プロバイダ基盤。

プロバイダ識別子、トークンの組、および認証結果の共通型を定義する。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from tmrecords.core.concurrency import SingleFlight

if TYPE_CHECKING:
    from tmrecords.auth.storage import TokenStore


class Provider(Enum):
    """独立した認証ドメイン。

    認証方式、ヘッダ形式、TokenStore のスロットを選択する。
    """

    TICKET = "ticket"
    OAUTH2 = "oauth2"


@dataclass(frozen=True, slots=True)
class TokenRecord:
    """プロバイダごとのアクセストークンとリフレッシュトークンの組。

    有効期限は保持しない。失効はサーバーの 401 応答で検知する。
    """

    access_token: str | None = None
    refresh_token: str | None = None


EMPTY_RECORD = TokenRecord()


class AuthStatus(Enum):
    """認証試行の結果種別。"""

    SUCCESS = "success"
    SOFT_FAILURE = "soft_failure"
    HARD_FAILURE = "hard_failure"


@dataclass(frozen=True, slots=True)
class AuthResult:
    """認証試行の結果。

    SOFT_FAILURE は 2xx 応答だが必要なトークンが欠けていた場合、
    HARD_FAILURE は HTTP エラーや通信失敗の場合を表す。
    """

    status: AuthStatus
    reason: str | None = None
    error: BaseException | None = None

    @classmethod
    def success(cls) -> AuthResult:
        return cls(AuthStatus.SUCCESS)

    @classmethod
    def soft_failure(cls, reason: str) -> AuthResult:
        return cls(AuthStatus.SOFT_FAILURE, reason=reason)

    @classmethod
    def hard_failure(cls, error: BaseException, reason: str | None = None) -> AuthResult:
        return cls(AuthStatus.HARD_FAILURE, reason=reason or str(error), error=error)

    @property
    def ok(self) -> bool:
        return self.status is AuthStatus.SUCCESS


class Authenticator(ABC):
    """認証プロバイダの抽象基底クラス。

    ベース資格情報からのフルログインの共通契約を表す。再認証の単一実行は
    プロバイダ単位で共有するため、同じ認証プロバイダを使うクライアントは
    すべてこのインスタンスの ``reauth`` に合流する。
    """

    provider: Provider

    def __init__(self, token_store: TokenStore) -> None:
        self._token_store = token_store
        self.reauth: SingleFlight[None] = SingleFlight()

    @property
    def token_store(self) -> TokenStore:
        return self._token_store

    @abstractmethod
    async def login(self) -> AuthResult:
        """フルログインを実行し、取得したトークンを TokenStore に保存する。"""
