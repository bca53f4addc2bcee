"""
Tests for CoinGecko client, market-data service and enricher
"""

import httpx
import pytest

from mention_miner.config import MarketConfig
from mention_miner.errors import CollaboratorError
from mention_miner.market.client import CoinGeckoClient
from mention_miner.market.enricher import MarketEnricher
from mention_miner.market.matching import find_coin_match, normalize_symbol
from mention_miner.market.service import MarketDataService
from mention_miner.models import CoinMarketData, MarketQuoteResponse


def create_test_markets() -> list:
    """Helper: CoinGecko /coins/markets 格式的資料"""
    return [
        {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 42000.0,
         "market_cap": 8.2e11, "total_volume": 2.1e10, "price_change_percentage_24h": 1.5,
         "circulating_supply": 19500000},
        {"id": "ethereum", "symbol": "eth", "name": "Ethereum", "current_price": 2500.0,
         "market_cap": 3.0e11, "total_volume": 1.0e10, "price_change_percentage_24h": -0.5,
         "circulating_supply": None},
        {"id": "shiba-inu", "symbol": "shib", "name": "Shiba Inu", "current_price": 0.00001},
        {"id": "render-token", "symbol": "rndr", "name": "Render", "current_price": 7.1},
    ]


class FakeFetcher:
    """可切換成功/失敗的 fetch_markets"""

    def __init__(self, markets=None):
        self.markets = markets if markets is not None else create_test_markets()
        self.fail = False
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.fail:
            raise CollaboratorError("coingecko", "HTTP 429")
        return self.markets


def test_normalize_symbol():
    """測試名稱正規化"""
    assert normalize_symbol("Shiba Inu") == "shibainu"
    assert normalize_symbol("$PEPE!") == "pepe"


def test_match_direct_mapping():
    """測試主流幣直接對照"""
    assert find_coin_match("BTC", create_test_markets())["id"] == "bitcoin"
    assert find_coin_match("Ethereum", create_test_markets())["id"] == "ethereum"


def test_match_exact():
    """測試 id / symbol / 去 dash id 完全相符"""
    markets = create_test_markets()

    assert find_coin_match("SHIB", markets)["id"] == "shiba-inu"
    assert find_coin_match("Shiba Inu", markets)["id"] == "shiba-inu"


def test_match_fuzzy():
    """測試子字串模糊比對"""
    assert find_coin_match("Render", create_test_markets())["id"] == "render-token"


def test_match_none():
    """測試沒有對應"""
    assert find_coin_match("Totally Unknown Coin", create_test_markets()) is None
    assert find_coin_match("!!!", create_test_markets()) is None


def test_client_fetch_markets():
    """測試 CoinGecko request 參數與回應"""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen['path'] = request.url.path
        seen['params'] = dict(request.url.params)
        seen['cache'] = request.headers.get("Cache-Control")
        return httpx.Response(200, json=create_test_markets())

    client = CoinGeckoClient(MarketConfig(), client=httpx.Client(transport=httpx.MockTransport(handler)))
    markets = client.fetch_markets()

    assert len(markets) == 4
    assert seen['path'] == "/api/v3/coins/markets"
    assert seen['params']['vs_currency'] == "usd"
    assert seen['params']['order'] == "market_cap_desc"
    assert seen['params']['per_page'] == "250"
    assert seen['params']['price_change_percentage'] == "24h"
    assert "no-cache" in seen['cache']


def test_client_http_error():
    """測試非 2xx 轉成 CollaboratorError"""
    transport = httpx.MockTransport(lambda request: httpx.Response(429, json={"error": "rate limited"}))
    client = CoinGeckoClient(client=httpx.Client(transport=transport))

    with pytest.raises(CollaboratorError) as exc_info:
        client.fetch_markets()

    assert exc_info.value.collaborator == "coingecko"


def test_client_empty_response():
    """測試空回應"""
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[]))
    client = CoinGeckoClient(client=httpx.Client(transport=transport))

    with pytest.raises(CollaboratorError):
        client.fetch_markets()


def test_service_quote():
    """測試 symbols -> 市場資料"""
    service = MarketDataService(FakeFetcher(), clock=lambda: 1700000000.5)

    response = service.quote(["BTC", "ETH", "Unknown Gem"])

    assert set(response.data.keys()) == {"BTC", "ETH"}
    assert response.data["BTC"].price == 42000.0
    assert response.data["BTC"].volume_24h == 2.1e10
    assert response.data["BTC"].name == "BTC"
    assert response.data["ETH"].circulating_supply == 0
    assert response.timestamp == 1700000000500
    assert response.is_fresh


def test_service_serves_cache_on_failure():
    """測試上游失敗時使用快取 (is_fresh=False)"""
    fetcher = FakeFetcher()
    service = MarketDataService(fetcher)
    service.quote(["BTC"])

    fetcher.fail = True
    response = service.quote(["BTC"])

    assert not response.is_fresh
    assert response.data["BTC"].price == 42000.0


def test_service_raises_without_cache():
    """測試從未成功過時直接拋出"""
    fetcher = FakeFetcher()
    fetcher.fail = True

    with pytest.raises(CollaboratorError):
        MarketDataService(fetcher).quote(["BTC"])


class FakeQuote:
    """記錄呼叫的 quote collaborator"""

    def __init__(self):
        self.requests = []
        self.prices = {"BTC": 100.0}
        self.fail = False
        self.is_fresh = True

    def __call__(self, symbols):
        self.requests.append(list(symbols))
        if self.fail:
            raise CollaboratorError("coingecko", "down")
        data = {
            symbol: CoinMarketData(id=symbol.lower(), name=symbol, symbol=symbol.lower(), price=price)
            for symbol, price in self.prices.items() if symbol in symbols
        }
        return MarketQuoteResponse(data=data, timestamp=0, is_fresh=self.is_fresh)


def test_enricher_batches_distinct_coins():
    """測試所有 coin 合併成一次 request (去重)"""
    quote = FakeQuote()
    enricher = MarketEnricher(quote)

    changed = enricher.refresh(["BTC", "ETH", "BTC"])

    assert changed
    assert quote.requests == [["BTC", "ETH"]]
    assert enricher.snapshot["BTC"].price == 100.0
    assert not enricher.in_flight


def test_enricher_detects_unchanged():
    """測試價格沒變時不更新"""
    quote = FakeQuote()
    enricher = MarketEnricher(quote, clock=iter([1.0, 2.0]).__next__)

    assert enricher.refresh(["BTC"])
    assert not enricher.refresh(["BTC"])
    assert enricher.fetched_at == 1.0

    quote.prices["BTC"] = 101.0
    assert enricher.refresh(["BTC"])
    assert enricher.fetched_at == 2.0


def test_enricher_keeps_snapshot_on_error():
    """測試失敗時保留舊 snapshot 並標記 stale"""
    quote = FakeQuote()
    enricher = MarketEnricher(quote)
    enricher.refresh(["BTC"])

    quote.fail = True
    assert not enricher.refresh(["BTC"])

    assert enricher.stale
    assert enricher.last_error is not None
    assert enricher.snapshot["BTC"].price == 100.0

    quote.fail = False
    enricher.refresh(["BTC"])
    assert not enricher.stale


def test_enricher_marks_cached_response_stale():
    """測試 collaborator 回傳快取資料時標記 stale"""
    quote = FakeQuote()
    quote.is_fresh = False
    enricher = MarketEnricher(quote)

    enricher.refresh(["BTC"])

    assert enricher.stale
    assert "BTC" in enricher.snapshot


def test_enricher_discards_after_close():
    """測試 close() 後不再更新"""
    quote = FakeQuote()
    enricher = MarketEnricher(quote)
    enricher.close()

    assert not enricher.refresh(["BTC"])
    assert enricher.snapshot == {}
    assert quote.requests == []
    assert not enricher.alive


def test_enricher_no_coins():
    """測試沒有 coin 時不呼叫 collaborator"""
    quote = FakeQuote()

    assert not MarketEnricher(quote).refresh([])
    assert quote.requests == []
