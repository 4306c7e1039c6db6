"""記録取得 API"""

from tmrecords.webapp.app import create_app

__all__ = ["create_app"]
