"""記録取得・名前解決・通知のサービス群"""

from tmrecords.services.account_names import AccountNameService
from tmrecords.services.alerts import AlertSubscription, YamlAlertRepository
from tmrecords.services.leaderboards import LeaderboardService, filter_records_by_period
from tmrecords.services.notifications import Mailer, format_new_records
from tmrecords.services.scheduler import AlertScheduler, CheckSummary

__all__ = [
    "AccountNameService",
    "AlertScheduler",
    "AlertSubscription",
    "CheckSummary",
    "LeaderboardService",
    "Mailer",
    "YamlAlertRepository",
    "filter_records_by_period",
    "format_new_records",
]
