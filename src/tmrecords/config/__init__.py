"""設定管理 - 設定の読み込みと管理"""

from tmrecords.config.settings import TmSettings, mask_secret

__all__ = [
    "TmSettings",
    "mask_secret",
]
