"""
CoinGecko market-data client

一次取回市值前 N 名的市場資料 (不逐幣呼叫)。
"""

import time
from typing import Any, Dict, List, Optional
import logging

import httpx

from mention_miner.config import MarketConfig
from mention_miner.errors import CollaboratorError

logger = logging.getLogger(__name__)


NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class CoinGeckoClient:
    """CoinGecko /coins/markets client"""

    def __init__(self, config: Optional[MarketConfig] = None, client: Optional[httpx.Client] = None):
        self.config = config or MarketConfig()
        self._client = client or httpx.Client(timeout=self.config.timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def fetch_markets(self) -> List[Dict[str, Any]]:
        """
        取回市場資料

        Returns:
            CoinGecko market entries (依市值降序)

        Raises:
            CollaboratorError: 連線失敗、非 2xx 或回應格式錯誤
        """
        params = {
            "vs_currency": self.config.vs_currency,
            "order": "market_cap_desc",
            "per_page": self.config.per_page,
            "sparkline": "false",
            "price_change_percentage": "24h",
            "t": int(time.time() * 1000),  # 避免中間層快取
        }

        try:
            response = self._client.get(
                f"{self.config.base_url.rstrip('/')}/coins/markets",
                params=params,
                headers=NO_CACHE_HEADERS,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"CoinGecko request failed: {e}")
            raise CollaboratorError("coingecko", str(e))
        except ValueError as e:
            raise CollaboratorError("coingecko", f"invalid JSON: {e}")

        if not isinstance(payload, list) or not payload:
            raise CollaboratorError("coingecko", "no data received")

        logger.info(f"Fetched {len(payload)} market entries from CoinGecko")
        return [entry for entry in payload if isinstance(entry, dict)]
