"""Trackmania のタイム表記ユーティリティ"""

from dataclasses import dataclass


def format_time(time_ms: int | None) -> str:
    """ミリ秒のタイムを読みやすい形式に変換する

    1 時間以上は ``H:MM:SS.mmm``、1 分以上は ``M:SS.mmm``、それ未満は ``S.mmm``。
    """
    if not time_ms or time_ms < 0:
        return "0.000"

    total_seconds, milliseconds = divmod(int(time_ms), 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}.{milliseconds:03d}"
    if minutes > 0:
        return f"{minutes}:{seconds:02d}.{milliseconds:03d}"
    return f"{seconds}.{milliseconds:03d}"


@dataclass(frozen=True)
class TimeDifference:
    """2 つのタイムの差分

    Attributes:
        difference: 新タイム - 旧タイム（負なら短縮）
        is_improvement: タイムが短縮されたかどうか
    """
    difference: int
    is_improvement: bool

    @property
    def abs_difference(self) -> int:
        return abs(self.difference)


def calculate_time_difference(old_time_ms: int, new_time_ms: int) -> TimeDifference:
    difference = new_time_ms - old_time_ms
    return TimeDifference(difference=difference, is_improvement=difference < 0)


def format_time_difference(old_time_ms: int, new_time_ms: int) -> str:
    """通知メール向けの差分説明文を返す"""
    diff = calculate_time_difference(old_time_ms, new_time_ms)
    verb = "improved" if diff.is_improvement else "got worse"
    return (
        f"Your time {verb} by {format_time(diff.abs_difference)} "
        f"({format_time(old_time_ms)} → {format_time(new_time_ms)})"
    )
