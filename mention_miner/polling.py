"""
Fixed-interval polling

單執行緒：多個 PollingLoop 由 Scheduler 依序執行 (「執行 -> 等待 -> 更新狀態」)。
clock / sleep 可注入，測試不需要真的計時。
"""

import time
from typing import Any, Callable, List, Optional, Sequence
import logging

from mention_miner.errors import MentionMinerError

logger = logging.getLogger(__name__)


class PollingLoop:
    """
    固定間隔執行的 task

    Args:
        name: 名稱 (log 用)
        interval: 間隔秒數
        task: 每次要執行的函式
    """

    def __init__(self, name: str, interval: float, task: Callable[[], Any]):
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.name = name
        self.interval = interval
        self._task = task
        self.next_run: Optional[float] = None  # None = 立即執行
        self.iterations = 0
        self.failures = 0

    def due(self, now: float) -> bool:
        return self.next_run is None or now >= self.next_run

    def run_once(self, now: float) -> Optional[Any]:
        """執行一次 task；collaborator 錯誤只記 log 不中斷 loop"""
        self.iterations += 1
        self.next_run = now + self.interval
        try:
            return self._task()
        except MentionMinerError as e:
            self.failures += 1
            logger.error(f"[{self.name}] poll #{self.iterations} failed: {e}")
            return None


class Scheduler:
    """
    單執行緒執行多個 PollingLoop

    Args:
        loops: PollingLoops
        clock: monotonic 秒數
        sleep: 等待函式
    """

    def __init__(
        self,
        loops: Sequence[PollingLoop],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.loops: List[PollingLoop] = list(loops)
        self._clock = clock
        self._sleep = sleep
        self._running = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """下一次 tick 前停止"""
        self._running = False

    def tick(self) -> int:
        """執行所有到期的 loops，回傳執行數"""
        self.ticks += 1
        ran = 0
        for loop in self.loops:
            now = self._clock()
            if loop.due(now):
                loop.run_once(now)
                ran += 1
        return ran

    def run(self, max_ticks: Optional[int] = None) -> None:
        """
        持續執行直到 stop() 或達到 max_ticks

        第一次 tick 會立即執行所有 loops (初始載入)。
        """
        if not self.loops:
            return

        self._running = True
        logger.info("Polling: " + ", ".join(f"{loop.name} every {loop.interval}s" for loop in self.loops))

        while self._running:
            self.tick()

            if max_ticks is not None and self.ticks >= max_ticks:
                break
            if not self._running:
                break

            next_due = min(loop.next_run for loop in self.loops)
            self._sleep(max(next_due - self._clock(), 0.0))

        self._running = False
        logger.info(f"Polling stopped after {self.ticks} ticks")
