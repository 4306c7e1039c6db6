"""YamlAlertRepository のユニットテスト"""

import tempfile
import unittest
from pathlib import Path

import yaml

from tmrecords.errors import ErrorCode, TmException
from tmrecords.services.alerts import AlertSubscription, DriverSubscription, YamlAlertRepository


class TestYamlAlertRepository(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "alerts.yaml"

    def tearDown(self):
        self.tmp.cleanup()

    def test_loads_subscriptions(self):
        self.path.write_text(
            "alerts:\n"
            "  - username: mapper_one\n"
            "    email: one@example.com\n"
            "  - username: mapper_two\n"
            "    email: two@example.com\n",
            encoding="utf-8",
        )

        alerts = YamlAlertRepository(self.path).list_alerts()

        self.assertEqual(
            alerts,
            [
                AlertSubscription("mapper_one", "one@example.com"),
                AlertSubscription("mapper_two", "two@example.com"),
            ],
        )

    def test_missing_file_returns_empty(self):
        self.assertEqual(YamlAlertRepository(self.path).list_alerts(), [])

    def test_invalid_entries_are_skipped(self):
        self.path.write_text(
            "alerts:\n"
            "  - username: only_name\n"
            "  - just a string\n"
            "  - username: valid\n"
            "    email: valid@example.com\n",
            encoding="utf-8",
        )

        alerts = YamlAlertRepository(self.path).list_alerts()

        self.assertEqual(alerts, [AlertSubscription("valid", "valid@example.com")])

    def test_file_without_alerts_list(self):
        self.path.write_text("other: value\n", encoding="utf-8")

        self.assertEqual(YamlAlertRepository(self.path).list_alerts(), [])

    def test_malformed_yaml_raises(self):
        self.path.write_text("alerts: [unclosed\n", encoding="utf-8")

        with self.assertRaises(TmException) as ctx:
            YamlAlertRepository(self.path).list_alerts()

        self.assertEqual(ctx.exception.error.code, ErrorCode.CONFIG_INVALID_VALUE.value)


class TestDriverSubscriptions(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "alerts.yaml"

    def tearDown(self):
        self.tmp.cleanup()

    def test_loads_drivers(self):
        self.path.write_text(
            "drivers:\n"
            "  - email: d@example.com\n"
            "    map_uid: uid-1\n"
            "    map_name: Winter 07\n"
            "    account_id: acc-1\n"
            "    position: 3\n"
            "    score: 45123\n"
            "  - email: e@example.com\n"
            "    map_uid: uid-2\n"
            "    username: speedy\n"
            "    position: '12'\n",
            encoding="utf-8",
        )

        drivers = YamlAlertRepository(self.path).list_drivers()

        self.assertEqual(
            drivers,
            [
                DriverSubscription(
                    "d@example.com", "uid-1", 3, account_id="acc-1", map_name="Winter 07", score=45123
                ),
                DriverSubscription("e@example.com", "uid-2", 12, username="speedy"),
            ],
        )

    def test_invalid_driver_entries_are_skipped(self):
        self.path.write_text(
            "drivers:\n"
            "  - email: d@example.com\n"
            "    map_uid: uid-1\n"
            "    position: 3\n"
            "  - email: d@example.com\n"
            "    map_uid: uid-1\n"
            "    account_id: acc-1\n"
            "    position: first\n"
            "  - not a mapping\n"
            "  - email: ok@example.com\n"
            "    map_uid: uid-1\n"
            "    account_id: acc-1\n"
            "    position: 1\n",
            encoding="utf-8",
        )

        drivers = YamlAlertRepository(self.path).list_drivers()

        self.assertEqual(drivers, [DriverSubscription("ok@example.com", "uid-1", 1, account_id="acc-1")])

    def test_file_without_drivers(self):
        self.path.write_text("alerts: []\n", encoding="utf-8")

        self.assertEqual(YamlAlertRepository(self.path).list_drivers(), [])

    def test_save_drivers_keeps_alerts(self):
        self.path.write_text(
            "alerts:\n"
            "  - username: mapper_one\n"
            "    email: one@example.com\n"
            "drivers: []\n",
            encoding="utf-8",
        )
        repository = YamlAlertRepository(self.path)

        repository.save_drivers([DriverSubscription("d@example.com", "uid-1", 2, account_id="acc-1", score=45000)])

        data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        self.assertEqual(data["alerts"], [{"username": "mapper_one", "email": "one@example.com"}])
        self.assertEqual(
            data["drivers"],
            [{"email": "d@example.com", "map_uid": "uid-1", "account_id": "acc-1", "position": 2, "score": 45000}],
        )
        self.assertEqual(repository.list_alerts(), [AlertSubscription("mapper_one", "one@example.com")])


if __name__ == "__main__":
    unittest.main()
