"""
Market-data service

symbols -> {data, timestamp, is_fresh}。上游失敗時改用上一次成功的市場資料 (is_fresh=False)，
從未成功過才拋出錯誤。
"""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

from mention_miner.errors import CollaboratorError
from mention_miner.market.matching import find_coin_match
from mention_miner.models import CoinMarketData, MarketQuoteResponse

logger = logging.getLogger(__name__)


class MarketDataService:
    """
    Market-data collaborator

    Args:
        fetch_markets: 回傳 CoinGecko market entries 的函式 (通常是 CoinGeckoClient.fetch_markets)
        clock: 回傳 epoch 秒數的函式
    """

    def __init__(
        self,
        fetch_markets: Callable[[], List[Dict[str, Any]]],
        clock: Callable[[], float] = time.time
    ):
        self._fetch_markets = fetch_markets
        self._clock = clock
        self._cache: Optional[List[Dict[str, Any]]] = None
        self._cache_timestamp: Optional[int] = None

    def _load_markets(self) -> Tuple[List[Dict[str, Any]], bool]:
        """回傳 (markets, is_fresh)"""
        try:
            markets = self._fetch_markets()
        except CollaboratorError as e:
            if self._cache is None:
                raise
            logger.warning(f"Market fetch failed, serving cached data from {self._cache_timestamp}: {e}")
            return self._cache, False

        self._cache = markets
        self._cache_timestamp = int(self._clock() * 1000)
        return markets, True

    def quote(self, symbols: Sequence[str]) -> MarketQuoteResponse:
        """
        查詢一批 coin 的市場資料

        Args:
            symbols: coin/project 名稱 (沒有對應者不會出現在 data 中)

        Returns:
            MarketQuoteResponse

        Raises:
            CollaboratorError: 上游失敗且沒有快取
        """
        markets, is_fresh = self._load_markets()

        data: Dict[str, CoinMarketData] = {}
        for symbol in symbols:
            match = find_coin_match(symbol, markets)
            if not match:
                continue
            data[symbol] = CoinMarketData(
                id=str(match.get('id', symbol)),
                name=symbol,
                symbol=str(match.get('symbol', '')),
                price=match.get('current_price') or 0,
                market_cap=match.get('market_cap') or 0,
                volume_24h=match.get('total_volume') or 0,
                percent_change_24h=match.get('price_change_percentage_24h') or 0,
                circulating_supply=match.get('circulating_supply') or 0,
            )

        logger.info(f"Matched {len(data)}/{len(symbols)} coins (fresh={is_fresh})")
        return MarketQuoteResponse(
            data=data,
            timestamp=int(self._clock() * 1000),
            is_fresh=is_fresh
        )
