"""
エラー定義

tmrecordsで使用されるエラーコードと例外クラス
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """エラーコード

    カテゴリ別にエラーコードを定義:
    - CONFIG_xxx: 設定エラー
    - AUTH_xxx: 認証エラー
    - API_xxx: APIエラー
    - THROTTLE_xxx: スロットリングによる拒否
    - MAIL_xxx: メール送信エラー
    """
    # 設定エラー
    CONFIG_MISSING_CREDENTIALS = "CONFIG_001"
    CONFIG_INVALID_VALUE = "CONFIG_002"

    # 認証エラー
    AUTH_LOGIN_FAILED = "AUTH_001"
    AUTH_TOKENS_MISSING = "AUTH_003"

    # APIエラー
    API_ERROR = "API_002"

    # スロットリング
    THROTTLE_REFRESH = "THROTTLE_001"
    THROTTLE_LOGIN = "THROTTLE_002"

    # メール送信エラー
    MAIL_SEND_FAILED = "MAIL_001"


@dataclass
class TmError:
    """tmrecordsエラー情報

    Attributes:
        code: エラーコード文字列
        message: エラーメッセージ
        details: 追加のエラー詳細情報
        recoverable: 復旧可能かどうか
    """
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    recoverable: bool = False
    log_level: int = logging.ERROR


class TmException(Exception):
    """tmrecords例外クラス

    TmErrorをラップする例外クラス
    """

    def __init__(self, error: TmError):
        """TmExceptionを初期化

        Args:
            error: TmErrorインスタンス
        """
        self.error = error
        self.log_level = error.log_level
        super().__init__(f"[{error.code}] {error.message}")


class ConfigurationException(TmException):
    """設定不備による例外（ネットワーク呼び出し前に送出される）"""


class AuthenticationException(TmException):
    """ログイン・リフレッシュの失敗を呼び出し元へ伝える例外"""


class ThrottleException(TmException):
    """最小間隔を満たさない再認証の試行を拒否した例外"""


ERROR_CODE_LOG_LEVEL: Dict[ErrorCode, int] = {
    ErrorCode.THROTTLE_REFRESH: logging.WARNING,
    ErrorCode.THROTTLE_LOGIN: logging.WARNING,
    ErrorCode.AUTH_TOKENS_MISSING: logging.WARNING,
    ErrorCode.AUTH_LOGIN_FAILED: logging.ERROR,
}


# よく使用されるエラーのファクトリ関数
def create_config_error(message: str, details: Optional[Dict[str, Any]] = None) -> TmError:
    """設定エラーを作成

    Args:
        message: エラーメッセージ
        details: 追加詳細

    Returns:
        TmError: 設定エラー
    """
    return TmError(
        code=ErrorCode.CONFIG_MISSING_CREDENTIALS.value,
        message=message,
        details=details,
        recoverable=False,
        log_level=logging.ERROR,
    )


def create_auth_error(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    recoverable: bool = True,
) -> TmError:
    """認証エラーを作成

    Args:
        code: エラーコード
        message: エラーメッセージ
        details: 追加詳細
        recoverable: 復旧可能かどうか

    Returns:
        TmError: 認証エラー
    """
    return TmError(
        code=code.value,
        message=message,
        details=details,
        recoverable=recoverable,
        log_level=ERROR_CODE_LOG_LEVEL.get(code, logging.ERROR),
    )


def create_throttle_error(code: ErrorCode, message: str, provider: str) -> TmError:
    """スロットリングエラーを作成

    Args:
        code: THROTTLE_xxx のエラーコード
        message: エラーメッセージ
        provider: 対象プロバイダ名

    Returns:
        TmError: スロットリングエラー
    """
    return TmError(
        code=code.value,
        message=message,
        details={"provider": provider},
        recoverable=True,
        log_level=ERROR_CODE_LOG_LEVEL.get(code, logging.WARNING),
    )


def create_api_error(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    recoverable: bool = True,
    log_level: Optional[int] = None,
) -> TmError:
    """APIエラーを作成

    Args:
        code: エラーコード
        message: エラーメッセージ
        details: 追加詳細
        recoverable: 復旧可能かどうか

    Returns:
        TmError: APIエラー
    """
    return TmError(
        code=code.value,
        message=message,
        details=details,
        recoverable=recoverable,
        log_level=log_level or ERROR_CODE_LOG_LEVEL.get(code, logging.ERROR),
    )
