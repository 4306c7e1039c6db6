"""再認証の多重実行と呼び出し頻度を制御するプリミティブ."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class Throttle:
    """最小間隔を満たさない試行を即座に拒否するゲート.

    待機はしない。``try_acquire`` は判定と記録の間に await を挟まないため、
    単一イベントループ上では判定が競合しない。
    """

    def __init__(self, min_interval: float, clock: Clock = time.monotonic) -> None:
        if min_interval < 0:
            raise ValueError("min_interval は 0 以上である必要があります")

        self._min_interval = min_interval
        self._clock = clock
        self._last_attempt: Optional[float] = None
        self._total_rejections = 0

    @property
    def min_interval(self) -> float:
        return self._min_interval

    @property
    def total_rejections(self) -> int:
        return self._total_rejections

    def remaining(self) -> float:
        """次の試行が許可されるまでの残り秒数を返す."""
        if self._last_attempt is None:
            return 0.0
        elapsed = self._clock() - self._last_attempt
        return max(0.0, self._min_interval - elapsed)

    def is_throttled(self) -> bool:
        return self.remaining() > 0

    def mark(self) -> None:
        """試行時刻を記録する."""
        self._last_attempt = self._clock()

    def try_acquire(self) -> bool:
        """許可されていれば試行時刻を記録して True を返す."""
        if self.is_throttled():
            self._total_rejections += 1
            return False
        self.mark()
        return True


@dataclass(frozen=True)
class SingleFlightMetrics:
    """単一実行制御のメトリクス."""

    in_flight: bool
    total_started: int
    total_joined: int


class SingleFlight(Generic[T]):
    """同時に要求された処理を 1 つの実行に束ねる.

    実行中の処理があれば後続の呼び出しはその結果（または例外）を共有する。
    待機側がキャンセルされても共有タスク自体は継続する。
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[T]] = None
        self._total_started = 0
        self._total_joined = 0

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        """実行中の処理に合流するか、新しく開始して結果を返す."""
        async with self._lock:
            task = self._task
            if task is None or task.done():
                task = asyncio.ensure_future(factory())
                task.add_done_callback(self._clear)
                self._task = task
                self._total_started += 1
            else:
                self._total_joined += 1
                logger.debug("Joining in-flight task")

        return await asyncio.shield(task)

    def _clear(self, task: "asyncio.Future[T]") -> None:
        if self._task is task:
            self._task = None
        # 誰も待っていない場合の "exception was never retrieved" を防ぐ
        if not task.cancelled():
            task.exception()

    def get_metrics(self) -> SingleFlightMetrics:
        """現在のメトリクスを取得する."""
        return SingleFlightMetrics(
            in_flight=self.in_flight,
            total_started=self._total_started,
            total_joined=self._total_joined,
        )


class Pacer:
    """連続する呼び出しの間に固定の間隔を空ける.

    下流 API の毎秒リクエスト上限を守るため、並列化せず逐次実行で使用する。
    """

    def __init__(
        self,
        delay: float,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if delay < 0:
            raise ValueError("delay は 0 以上である必要があります")

        self._delay = delay
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None

    async def wait(self) -> None:
        """前回の呼び出しから delay 秒経過するまで待機する."""
        if self._last_call is not None:
            remaining = self._delay - (self._clock() - self._last_call)
            if remaining > 0:
                await self._sleep(remaining)
        self._last_call = self._clock()
