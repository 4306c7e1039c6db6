"""通知メールの整形と送信のユニットテスト"""

import smtplib
import unittest
from unittest.mock import patch
from zoneinfo import ZoneInfo

from tmrecords.errors import ErrorCode, TmException
from tmrecords.services.leaderboards import LeaderboardRecord, MapLeaderboard
from tmrecords.services.notifications import Mailer, collect_account_ids, format_new_records


def sample_records():
    return [
        MapLeaderboard(
            map_id=1,
            map_name="Summer 01",
            leaderboard=[
                LeaderboardRecord("acc-1", "France", 1, 45123, 1_700_000_000),
                LeaderboardRecord("acc-2", "Latvia", 2, 61234, 1_700_000_100),
            ],
        ),
        MapLeaderboard(
            map_id=2,
            map_name="Summer 02",
            leaderboard=[LeaderboardRecord("acc-1", "France", 5, 30000, 1_700_000_200)],
        ),
    ]


class TestFormatting(unittest.TestCase):
    def test_collect_account_ids_keeps_order_without_duplicates(self):
        self.assertEqual(collect_account_ids(sample_records()), ["acc-1", "acc-2"])

    def test_format_new_records(self):
        body = format_new_records(
            sample_records(), {"acc-1": "Speedy"}, tz=ZoneInfo("UTC")
        )

        self.assertIn("Map: Summer 01", body)
        self.assertIn("Player: Speedy", body)
        # 表示名が無いアカウントは ID をそのまま表示
        self.assertIn("Player: acc-2", body)
        self.assertIn("Time: 45.123", body)
        self.assertIn("Time: 1:01.234", body)
        self.assertIn("Date: 2023-11-14 22:13:20", body)
        self.assertIn("Map: Summer 02", body)

    def test_format_empty(self):
        self.assertEqual(format_new_records([], {}), "")


class TestMailer(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.mailer = Mailer("smtp.test", 465, "bot@example.com", "app-password")

    def test_build_message(self):
        message = self.mailer.build_message("to@example.com", "Subject", "Body")

        self.assertEqual(message["From"], "bot@example.com")
        self.assertEqual(message["To"], "to@example.com")
        self.assertEqual(message["Subject"], "Subject")
        self.assertIn("Body", message.get_content())

    @patch("tmrecords.services.notifications.smtplib.SMTP_SSL")
    async def test_send_logs_in_and_sends(self, mock_smtp_cls):
        smtp = mock_smtp_cls.return_value.__enter__.return_value

        await self.mailer.send("to@example.com", "Subject", "Body")

        mock_smtp_cls.assert_called_once_with("smtp.test", 465, timeout=30.0)
        smtp.login.assert_called_once_with("bot@example.com", "app-password")
        sent = smtp.send_message.call_args.args[0]
        self.assertEqual(sent["To"], "to@example.com")

    @patch("tmrecords.services.notifications.smtplib.SMTP_SSL")
    async def test_send_failure_is_wrapped(self, mock_smtp_cls):
        smtp = mock_smtp_cls.return_value.__enter__.return_value
        smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

        with self.assertRaises(TmException) as ctx:
            await self.mailer.send("to@example.com", "Subject", "Body")

        self.assertEqual(ctx.exception.error.code, ErrorCode.MAIL_SEND_FAILED.value)
        self.assertEqual(ctx.exception.error.details["to"], "to@example.com")


if __name__ == "__main__":
    unittest.main()
