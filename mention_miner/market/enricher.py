"""
Market Enricher

保存最後一次成功的市場資料 snapshot，供 market table join。

- 所有 distinct coin 名稱合併成一個 request
- request 失敗時保留舊 snapshot 並標記 stale (絕不因錯誤清空)
- in_flight 表示 refresh 進行中
- close() 之後才回來的結果直接丟棄
"""

import time
from typing import Callable, Dict, Iterable, List, Optional
import logging

from mention_miner.errors import CollaboratorError
from mention_miner.models import CoinMarketData, MarketQuoteResponse

logger = logging.getLogger(__name__)


class MarketEnricher:
    """
    Market snapshot 管理

    Args:
        quote: symbols -> MarketQuoteResponse (通常是 MarketDataService.quote)
        clock: 回傳 epoch 秒數的函式
    """

    def __init__(
        self,
        quote: Callable[[List[str]], MarketQuoteResponse],
        clock: Callable[[], float] = time.time
    ):
        self._quote = quote
        self._clock = clock
        self._snapshot: Dict[str, CoinMarketData] = {}
        self.fetched_at: Optional[float] = None
        self.stale = False
        self.in_flight = False
        self.last_error: Optional[str] = None
        self._alive = True

    @property
    def snapshot(self) -> Dict[str, CoinMarketData]:
        """目前的市場資料 (copy)"""
        return dict(self._snapshot)

    @property
    def alive(self) -> bool:
        return self._alive

    def close(self) -> None:
        """停止接受結果 (擁有者被銷毀)"""
        self._alive = False
        self.in_flight = False

    def refresh(self, coins: Iterable[str]) -> bool:
        """
        重新取得市場資料

        Args:
            coins: aggregate 中的 coin 名稱 (會去重並合併成一次 request)

        Returns:
            snapshot 是否有變動 (price 或 24h change)
        """
        symbols = list(dict.fromkeys(coins))
        if not symbols or not self._alive:
            return False

        self.in_flight = True
        try:
            response = self._quote(symbols)
        except CollaboratorError as e:
            if not self._alive:
                return False
            self.stale = True
            self.last_error = str(e)
            logger.error(f"Market refresh failed, keeping snapshot from {self.fetched_at}: {e}")
            return False
        finally:
            self.in_flight = False

        if not self._alive:
            logger.debug("Discarding market response after close()")
            return False

        self.stale = not response.is_fresh
        self.last_error = None
        if self.stale:
            logger.warning("Market data served from collaborator cache (stale)")

        changed = self._has_changes(response.data)
        if changed:
            self._snapshot = dict(response.data)
            self.fetched_at = self._clock()
            samples = ", ".join(
                f"{coin}: ${data.price} ({data.percent_change_24h:.2f}%)"
                for coin, data in list(response.data.items())[:3]
            )
            logger.info(f"Market data updated with changes: {samples}")

        return changed

    def _has_changes(self, data: Dict[str, CoinMarketData]) -> bool:
        for coin, market in data.items():
            current = self._snapshot.get(coin)
            if (current is None or current.price != market.price or
                    current.percent_change_24h != market.percent_change_24h):
                return True
        return False
