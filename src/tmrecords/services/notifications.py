"""
新記録通知メールの整形と送信

送信は smtplib を使い、イベントループを塞がないようワーカースレッドで実行する。
"""

import asyncio
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from tmrecords.errors import ErrorCode, TmError, TmException
from tmrecords.services.formatting import format_time
from tmrecords.services.leaderboards import MapLeaderboard

logger = logging.getLogger(__name__)


def collect_account_ids(records: Iterable[MapLeaderboard]) -> List[str]:
    """記録に含まれるアカウント ID を出現順に重複なく返す"""
    seen: Dict[str, None] = {}
    for record in records:
        for entry in record.leaderboard:
            seen.setdefault(entry.account_id, None)
    return list(seen)


def format_new_records(
    records: Iterable[MapLeaderboard],
    names: Dict[str, str],
    tz: Optional[ZoneInfo] = None,
) -> str:
    """通知メール本文用に新記録を整形する

    Args:
        records: マップごとの新記録
        names: アカウント ID から表示名への対応（無い場合は ID を表示）
        tz: 記録日時の表示タイムゾーン

    Returns:
        str: 整形済みテキスト
    """
    lines: List[str] = []
    for record in records:
        lines.append(f"Map: {record.map_name}")
        for entry in record.leaderboard:
            player = names.get(entry.account_id) or entry.account_id
            driven_at = datetime.fromtimestamp(entry.timestamp, tz=tz).strftime("%Y-%m-%d %H:%M:%S")
            lines.append(f"  Player: {player}")
            lines.append(f"  Zone: {entry.zone_name}")
            lines.append(f"  Position: {entry.position}")
            lines.append(f"  Time: {format_time(entry.score)}")
            lines.append(f"  Date: {driven_at}")
            lines.append("")
    return "\n".join(lines).strip()


class Mailer:
    """SMTP (SSL) 経由でメールを送信する"""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        *,
        sender: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.sender = sender or username
        self.timeout = timeout

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return message

    async def send(self, to: str, subject: str, body: str) -> None:
        """メールを送信する

        Raises:
            TmException: SMTP でのエラー、または接続に失敗した場合
        """
        message = self.build_message(to, subject, body)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise TmException(
                TmError(
                    code=ErrorCode.MAIL_SEND_FAILED.value,
                    message=f"メール送信に失敗しました: {exc}",
                    details={"to": to, "host": self.host},
                    recoverable=True,
                )
            ) from exc
        logger.info("Email sent to %s", to)

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as smtp:
            if self.username:
                smtp.login(self.username, self._password)
            smtp.send_message(message)
